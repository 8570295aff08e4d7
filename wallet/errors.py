class WalletServiceError(Exception):
    pass


class VerificationError(WalletServiceError):
    pass


class InvalidReportError(WalletServiceError):
    pass


class StorageError(WalletServiceError):
    pass
