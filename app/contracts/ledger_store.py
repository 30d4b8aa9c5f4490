from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class TransactionReceipt(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    tx_hash: str
    status: str
    block_number: int | None = None


class StoreRecordDetail(BaseModel):
    """Record detail as returned by the store, before numeric coercion."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = ""
    timestamp: int | float | str | None = None
    creator: str = ""
    public_value1: int | float | str | None = None
    public_value2: int | float | str | None = None
    is_verified: bool = False
    decrypted_value: int | float | str | None = None
    description: str = ""
