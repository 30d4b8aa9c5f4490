from pydantic import BaseModel


class EncryptedInput(BaseModel):
    encrypted_data: str
    proof: str


class DecryptionResult(BaseModel):
    clear_values: dict[str, int | str]


class DecryptionProofResult(BaseModel):
    decryption_result: DecryptionResult
    abi_encoded_clear_values: str | None = None
    decryption_proof: str | None = None
