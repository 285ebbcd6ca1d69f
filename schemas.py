from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TagIn(_CamelModel):
    user_id: str = Field(..., alias="userId", min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    color: Optional[str] = Field(None, max_length=9)


class TagUpdateIn(_CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: Optional[str] = Field(None, max_length=9)


class BankIn(_CamelModel):
    bank_name: str = Field(..., alias="bankName", min_length=1, max_length=120)


class TransactionUpdateIn(_CamelModel):
    transaction_id: str = Field(..., alias="transactionId", min_length=1)
    bank_name: str = Field(..., alias="bankName", min_length=1)
    transaction_data: Optional[dict[str, Any]] = Field(None, alias="transactionData")
    tags: Optional[list[Union[str, dict[str, Any]]]] = None

    @model_validator(mode="after")
    def _has_changes(self) -> "TransactionUpdateIn":
        if not self.transaction_data and self.tags is None:
            raise ValueError("transactionData or tags is required")
        return self


class BulkTransactionUpdateIn(_CamelModel):
    updates: list[TransactionUpdateIn] = Field(..., min_length=1)


class RecomputeIn(_CamelModel):
    user_id: str = Field(..., alias="userId", min_length=1)


class BankBreakdownOut(BaseModel):
    credit: float
    debit: float
    balance: float
    transactionCount: int
    accounts: list[str]


class TagAggregateOut(BaseModel):
    tagId: str
    tagName: str
    credit: float
    debit: float
    balance: float
    transactionCount: int
    statementIds: list[str]
    bankBreakdown: dict[str, BankBreakdownOut]


class TagsSummaryOut(BaseModel):
    id: str
    userId: str
    type: str
    tags: list[TagAggregateOut]
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class RecomputeJobOut(BaseModel):
    id: str
    userId: str
    trigger: str
    status: str
    banksScanned: int = 0
    banksSkipped: int = 0
    transactionsSeen: int = 0
    transactionsAggregated: int = 0
    transactionsUnclassified: int = 0
    error: Optional[str] = None
    startedAt: Optional[str] = None
    finishedAt: Optional[str] = None
