from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class HandleModel(BaseModel):
    handle: str
    type: str


class EncryptInputRequest(BaseModel):
    contract_address: str
    user_address: str
    values: List[int] = Field(min_length=1, max_length=16)
    type: str = "euint16"


class SubmitBody(BaseModel):
    emotional: HandleModel
    social: HandleModel
    sleep: HandleModel
    input_proof: str


class ReauthorizeBody(BaseModel):
    index: Optional[int] = None
    owner: Optional[str] = None


class SignedEnvelope(BaseModel):
    principal: str
    public_key_b64: str
    issued_at: int
    nonce: str = Field(min_length=8, max_length=128)
    body: Dict[str, Any]
    sig_b64: str


class DecryptPairModel(BaseModel):
    handle: str
    type: str
    contract_address: str


class UserDecryptRequest(BaseModel):
    pairs: List[DecryptPairModel]
    statement: Dict[str, Any]
    signature: str
