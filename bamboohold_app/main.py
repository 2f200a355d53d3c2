import logging
import math
import os
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from bamboohold import (
    BambooHoldError,
    DecryptionRequest,
    EncryptedType,
    Handle,
    IndexOutOfBounds,
    KmsDecryptionOracle,
    MockCoprocessor,
    NoSubmission,
    ProofRejected,
    RiskRegistry,
    SessionExpired,
    StatementRejected,
    Unauthorized,
    normalize_address,
)

from .config import (
    CONTRACT_ADDRESS,
    DECRYPT_RPM,
    ENV,
    KEYS_PATH,
    MAX_CLOCK_SKEW_SECONDS,
    REQUEST_FRESHNESS_SECONDS,
    SUBMIT_RPM,
    disclosure_policy,
    is_debug,
    is_production,
    load_key_material,
    validate_config,
)
from .db import (
    SqliteCiphertextStore,
    SqliteLedgerStore,
    SqliteNonceStore,
    append_event,
    export_events,
    get_db_stats,
    init_db,
)
from .keys import EnvelopeError, KeyMaterial, verify_envelope, write_key_material
from .logging_config import audit_log, configure_logging, set_request_id
from .models import EncryptInputRequest, ReauthorizeBody, SignedEnvelope, SubmitBody, UserDecryptRequest
from .rate_limit import RateLimiter
from .util import b64e, now_epoch

logger = logging.getLogger(__name__)

app = FastAPI(title="BambooHold Confidential Risk Registry")

submit_limiter = RateLimiter(SUBMIT_RPM)
decrypt_limiter = RateLimiter(DECRYPT_RPM)
NONCES = SqliteNonceStore()
COPROCESSOR = None
REGISTRY = None
ORACLE = None
INPUT_KID = None

# Most specific first: SessionExpired must win over its DisclosureFailed base
_ERROR_STATUS = [
    (SessionExpired, 403, "SESSION_EXPIRED"),
    (Unauthorized, 403, "UNAUTHORIZED"),
    (NoSubmission, 404, "NO_SUBMISSION"),
    (IndexOutOfBounds, 404, "INDEX_OUT_OF_BOUNDS"),
    (ProofRejected, 422, "PROOF_REJECTED"),
    (StatementRejected, 400, "STATEMENT_REJECTED"),
]


def _load_keys() -> KeyMaterial:
    if not os.path.exists(KEYS_PATH):
        if is_production():
            raise RuntimeError(f"Key material missing at {KEYS_PATH}")
        logger.warning("generating development key material at %s", KEYS_PATH)
        write_key_material(KEYS_PATH)
    return KeyMaterial.from_dict(load_key_material(force_reload=True))


@app.on_event("startup")
def _startup():
    global COPROCESSOR, REGISTRY, ORACLE, INPUT_KID
    configure_logging(level="DEBUG" if is_debug() else "INFO")
    init_db()
    keys = _load_keys()
    INPUT_KID = keys.input_kid
    COPROCESSOR = MockCoprocessor(
        network_key=keys.network_key,
        input_signing_key=keys.input_signing_key,
        input_kid=keys.input_kid,
        store=SqliteCiphertextStore()
    )
    REGISTRY = RiskRegistry(CONTRACT_ADDRESS, COPROCESSOR, store=SqliteLedgerStore())
    REGISTRY.subscribe(append_event)
    ORACLE = KmsDecryptionOracle(
        COPROCESSOR,
        REGISTRY.acl,
        nonce_store=NONCES,
        max_clock_skew_seconds=MAX_CLOCK_SKEW_SECONDS,
        max_duration_days=disclosure_policy().duration_days
    )


@app.middleware("http")
async def _request_id(request: Request, call_next):
    request_id = set_request_id(request.headers.get("x-request-id"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(BambooHoldError)
async def _bamboohold_error(request: Request, exc: BambooHoldError):
    for error_type, status, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return JSONResponse(status_code=status, content={"detail": code, "message": str(exc)})
    return JSONResponse(status_code=400, content={"detail": "REQUEST_FAILED", "message": str(exc)})


def _principal(value: str) -> str:
    try:
        return normalize_address(value, "principal")
    except ValueError:
        raise HTTPException(400, "INVALID_ADDRESS")


def _rate_limit(limiter: RateLimiter, key: str, client_id: str, endpoint: str) -> None:
    result = limiter.check(key)
    if not result.allowed:
        audit_log.rate_limit_exceeded(client_id, endpoint)
        raise HTTPException(429, "RATE_LIMIT", headers={"Retry-After": str(math.ceil(result.retry_after))})


def _authenticate(envelope: SignedEnvelope, limiter: RateLimiter, endpoint: str) -> str:
    principal = envelope.principal.lower()
    _rate_limit(limiter, f"{endpoint}:{principal}", principal, endpoint)
    try:
        return verify_envelope(
            envelope.model_dump(),
            NONCES,
            now_epoch(),
            REQUEST_FRESHNESS_SECONDS,
            MAX_CLOCK_SKEW_SECONDS
        )
    except EnvelopeError as e:
        audit_log.security_event("envelope_rejected", principal=principal, code=e.code)
        raise HTTPException(403, e.code)


def _handle(model) -> Handle:
    try:
        return Handle.from_dict(model.model_dump())
    except ValueError:
        raise HTTPException(422, "INVALID_HANDLE")


@app.get("/healthz")
def healthz():
    return {"status": "ok", "env": ENV, "config": validate_config(), "db": get_db_stats()}


@app.get("/config")
def config():
    policy = disclosure_policy()
    model = REGISTRY.model
    return {
        "contract_address": REGISTRY.address,
        "chain_id": policy.chain_id,
        "disclosure": {"duration_days": policy.duration_days, "domain": policy.domain()},
        "input_verifier": {"kid": INPUT_KID, "verify_key_b64": b64e(COPROCESSOR.input_verify_key)},
        "model": {
            "weights": [model.emotional_weight, model.social_weight, model.sleep_weight],
            "moderate_threshold": model.moderate_threshold,
            "high_threshold": model.high_threshold,
            "max_input": model.max_input,
        },
    }


@app.post("/relayer/input")
def relayer_input(req: EncryptInputRequest):
    _rate_limit(submit_limiter, "relayer", "relayer", "/relayer/input")
    try:
        enc_type = EncryptedType.from_name(req.type)
        builder = COPROCESSOR.create_encrypted_input(req.contract_address, req.user_address)
        for value in req.values:
            builder.add(value, enc_type)
        return builder.encrypt().to_dict()
    except ValueError as e:
        raise HTTPException(400, str(e))


@app.post("/submit")
def submit(envelope: SignedEnvelope):
    principal = _authenticate(envelope, submit_limiter, "/submit")
    try:
        body = SubmitBody(**envelope.body)
    except ValidationError:
        raise HTTPException(422, "INVALID_BODY")
    try:
        index = REGISTRY.submit(
            principal,
            _handle(body.emotional),
            _handle(body.social),
            _handle(body.sleep),
            body.input_proof
        )
    except ProofRejected as e:
        audit_log.proof_rejected(principal, str(e))
        raise
    except TypeError:
        raise HTTPException(422, "INVALID_HANDLE_TYPE")
    record = REGISTRY.get_at(principal, index)
    audit_log.submission_accepted(principal, index, record.timestamp)
    return {"principal": principal, "index": index, "timestamp": record.timestamp}


@app.get("/principals/{principal}/score")
def get_score(principal: str):
    return REGISTRY.get_risk_score(_principal(principal)).to_dict()


@app.get("/principals/{principal}/tier")
def get_tier(principal: str):
    return REGISTRY.get_tier(_principal(principal)).to_dict()


@app.get("/principals/{principal}/latest")
def get_latest(principal: str):
    return REGISTRY.get_latest(_principal(principal)).to_dict()


@app.get("/principals/{principal}/count")
def get_count(principal: str):
    return {"count": REGISTRY.get_count(_principal(principal))}


@app.get("/principals/{principal}/summary")
def get_summary(principal: str):
    return REGISTRY.get_summary(_principal(principal)).to_dict()


@app.get("/principals/{principal}/records/{index}")
def get_record(principal: str, index: int):
    return REGISTRY.get_at(_principal(principal), index).to_dict()


@app.post("/reauthorize")
def reauthorize(envelope: SignedEnvelope):
    principal = _authenticate(envelope, submit_limiter, "/reauthorize")
    try:
        body = ReauthorizeBody(**envelope.body)
    except ValidationError:
        raise HTTPException(422, "INVALID_BODY")
    if body.index is None:
        if REGISTRY.get_count(principal) == 0:
            raise NoSubmission(principal)
        added = REGISTRY.reauthorize_all(principal)
    else:
        owner = _principal(body.owner) if body.owner else None
        added = REGISTRY.reauthorize(principal, body.index, owner=owner)
    audit_log.reauthorization(principal, body.index, added)
    return {"principal": principal, "new_grants": added}


@app.post("/oracle/user-decrypt")
def user_decrypt(req: UserDecryptRequest):
    try:
        request = DecryptionRequest.from_dict(req.model_dump())
    except (KeyError, ValueError) as e:
        raise HTTPException(400, f"INVALID_REQUEST: {e}")

    user = request.statement.user_address
    _rate_limit(decrypt_limiter, user, user, "/oracle/user-decrypt")

    audit_log.disclosure_request(
        user,
        [p.handle.id for p in request.pairs],
        request.statement.contract_addresses
    )
    try:
        response = ORACLE.user_decrypt(request)
    except (StatementRejected, SessionExpired) as e:
        audit_log.disclosure_decision(user, "REJECTED", reason=str(e))
        raise

    if response.denied:
        audit_log.disclosure_decision(user, "DENIED", denied=sorted(response.denied))
    else:
        audit_log.disclosure_decision(user, "DISCLOSED", disclosed=len(response.plaintexts))
    return response.to_dict()


@app.get("/events")
def events(principal: Optional[str] = None, limit: int = 100):
    if principal:
        principal = _principal(principal)
    return export_events(principal, max(1, min(limit, 1000)))
