"""
Pydantic models shared by the state store, deposit sources and the workflow
"""

from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Deposit(BaseModel):
    """A matching transfer into the watched address. Identity is ``tx_hash``."""
    model_config = ConfigDict(frozen=True)

    tx_hash: str = Field(..., min_length=1)
    sender: str = Field(..., min_length=1)
    amount: int = Field(..., ge=0, description="Lovelace")


class FundUnit(BaseModel):
    """A spendable UTxO at the watched address"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="txhash#index")
    value: int = Field(..., ge=0, description="Lovelace")
    assets: Dict[str, int] = Field(default_factory=dict)

    @property
    def carries_foreign_value(self) -> bool:
        return bool(self.assets)


class MintRequest(BaseModel):
    """Everything the external builder needs for one mint"""
    model_config = ConfigDict(frozen=True)

    inputs: List[str] = Field(..., min_length=1)
    recipient: str
    change_address: str
    asset_name: str
    asset_name_hex: str
    invalid_hereafter: int = Field(..., ge=0)
    quantity: int = 1

    @field_validator('asset_name_hex')
    @classmethod
    def validate_hex(cls, v):
        try:
            bytes.fromhex(v)
        except ValueError:
            raise ValueError('asset_name_hex must be valid hexadecimal')
        return v

    @model_validator(mode='after')
    def hex_matches_name(self):
        if self.asset_name.encode().hex() != self.asset_name_hex:
            raise ValueError('asset_name_hex does not encode asset_name')
        return self


class StateSnapshot(BaseModel):
    """On-disk shape of the mint state file"""

    next_mint_counter: int = Field(1, ge=1)
    processed_deposits: List[str] = Field(default_factory=list)
    # Older state files have no pending section
    pending_deposits: Dict[str, int] = Field(default_factory=dict)

    @field_validator('processed_deposits', mode='before')
    @classmethod
    def null_processed(cls, v):
        return [] if v is None else v

    @field_validator('pending_deposits', mode='before')
    @classmethod
    def null_pending(cls, v):
        return {} if v is None else v

    @model_validator(mode='after')
    def reservations_below_counter(self):
        for deposit_id, sequence in self.pending_deposits.items():
            if sequence < 1 or sequence >= self.next_mint_counter:
                raise ValueError(
                    f'pending reservation {deposit_id}={sequence} is outside '
                    f'[1, {self.next_mint_counter})'
                )
        return self
