"""Exception taxonomy for token encoding, payment derivation and chain scanning."""


class CrowdTokenError(Exception):
    """Base class for every error raised by crowdtoken."""

    retryable = False

    @property
    def user_message(self) -> str:
        return str(self)


class MalformedField(CrowdTokenError):
    """A field has the wrong byte length or shape for its position."""


class InvalidKeyEncoding(CrowdTokenError):
    """An owner key is not a 33-byte compressed public key."""


class EmptyProtocolId(CrowdTokenError):
    """A data-carrying token was built without a protocol id."""


class UnrecognizedProtocol(CrowdTokenError):
    """The protocol id pushed by a script is not the expected one."""


class NotPushDropShaped(CrowdTokenError):
    """A script does not follow any known PushDrop pattern."""


class DerivationMismatch(CrowdTokenError):
    """The output at the agreed index is not locked to the re-derived payment key."""

    retryable = True

    @property
    def user_message(self) -> str:
        return "Payment key could not be matched. Please refresh and retry the payment."


class IndexerUnavailable(CrowdTokenError):
    """The chain indexer failed, timed out or returned unusable data."""

    retryable = True

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return "Blockchain indexer is unavailable. Please retry in a moment."


class PaymentNotAccepted(CrowdTokenError):
    """The wallet refused to internalize a payment."""


class CampaignStateError(CrowdTokenError):
    """The campaign ledger does not allow the requested transition."""
