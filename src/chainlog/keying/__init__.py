from .recipients import Recipient, SealedBoxEncryptor, ShareEncryptor, open_share
from .shamir import Share, combine, parse_secret, split
from .token import HardwareChallenge, TokenTransport, YubiKeyTransport

__all__ = [
    "Recipient",
    "SealedBoxEncryptor",
    "ShareEncryptor",
    "open_share",
    "Share",
    "combine",
    "parse_secret",
    "split",
    "HardwareChallenge",
    "TokenTransport",
    "YubiKeyTransport",
]
