"""
Custom exception classes for the mint engine
"""

class MinterError(Exception):
    """Base exception for mint engine operations"""
    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        self.code = code or "MINTER_ERROR"

class PersistenceError(MinterError):
    """State file could not be read or written"""
    def __init__(self, message: str):
        super().__init__(message, "PERSISTENCE_ERROR")

class SourceError(MinterError):
    """Deposit or ledger query failed"""
    def __init__(self, message: str):
        super().__init__(message, "SOURCE_ERROR")

class ConfigurationError(MinterError):
    """Missing or invalid configuration"""
    def __init__(self, message: str):
        super().__init__(message, "CONFIG_ERROR")

class AlreadyProcessedError(MinterError):
    """Deposit has already been minted for"""
    def __init__(self, deposit_id: str):
        super().__init__(f"Deposit {deposit_id} is already processed", "ALREADY_PROCESSED")
        self.deposit_id = deposit_id

class InsufficientFundsError(MinterError):
    """Not enough foreign-free value at the watched address"""
    def __init__(self, have: int, required: int):
        message = f"Insufficient funds: need {required}, have {have}"
        super().__init__(message, "INSUFFICIENT_FUNDS")
        self.have = have
        self.required = required

class DelegationError(MinterError):
    """External build/sign/submit step failed"""
    def __init__(self, stage: str, message: str, output: str = ""):
        full = f"{stage} failed: {message}"
        if output:
            full += f" (output: {output})"
        super().__init__(full, "DELEGATION_ERROR")
        self.stage = stage
        self.output = output

class CommandError(MinterError):
    """External command exited non-zero, timed out or could not be started"""
    def __init__(self, command: str, message: str, output: str = ""):
        full = f"{command}: {message}"
        if output:
            full += f" (output: {output})"
        super().__init__(full, "COMMAND_ERROR")
        self.command = command
        self.output = output
