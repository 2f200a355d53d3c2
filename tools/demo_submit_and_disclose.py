import json, sys
import requests

from bamboohold import (
    DecryptionOracle,
    DecryptionResponse,
    DisclosureClient,
    DisclosurePolicy,
    Handle,
    RiskTier,
    StatementRejected,
    Wallet,
    display_score,
)
from bamboohold_app.keys import sign_envelope

BASE = "http://127.0.0.1:8000"


class HttpDecryptionOracle(DecryptionOracle):
    """Decryption oracle reached over the service's /oracle/user-decrypt endpoint."""

    def __init__(self, base_url: str):
        self.base_url = base_url

    def user_decrypt(self, request):
        try:
            resp = requests.post(self.base_url + "/oracle/user-decrypt", json=request.to_dict(), timeout=10)
        except requests.RequestException as e:
            raise ConnectionError(str(e)) from e
        if resp.status_code != 200:
            raise StatementRejected(f"{resp.status_code} {resp.text}")
        return DecryptionResponse.from_dict(resp.json())


wallet = Wallet.from_b64(json.load(open("secrets/demo_wallet.json", "r", encoding="utf-8"))["private_key_b64"])
values = [int(v) for v in sys.argv[1:4]] if len(sys.argv) == 4 else [45, 30, 50]

config = requests.get(BASE + "/config").json()
contract = config["contract_address"]
domain = config["disclosure"]["domain"]
policy = DisclosurePolicy(
    duration_days=config["disclosure"]["duration_days"],
    chain_id=domain["chain_id"],
    domain_name=domain["name"],
    domain_version=domain["version"],
    verifying_contract=domain.get("verifying_contract"),
)

encrypted = requests.post(BASE + "/relayer/input", json={
    "contract_address": contract,
    "user_address": wallet.address,
    "values": values,
}).json()
handles = encrypted["handles"]
body = {"emotional": handles[0], "social": handles[1], "sleep": handles[2], "input_proof": encrypted["input_proof"]}
resp = requests.post(BASE + "/submit", json=sign_envelope(wallet, body))
print("Submit:", resp.status_code, resp.text)

record = requests.get(f"{BASE}/principals/{wallet.address}/latest").json()
record_handles = [Handle.from_dict(record[k]) for k in ("emotional", "social", "sleep", "score", "tier")]

before = wallet.signature_count
client = DisclosureClient(HttpDecryptionOracle(BASE), wallet, policy)
plain = client.disclose(record_handles, contract)
emotional, social, sleep, score, tier = (plain[h.id] for h in record_handles)
print(f"Disclosed: emotional={emotional} social={social} sleep={sleep}")
print(f"Score: {display_score(score)} ({score}/10), tier: {RiskTier(tier).label}")
print("Signatures for disclosure:", wallet.signature_count - before)

print("Summary:", requests.get(f"{BASE}/principals/{wallet.address}/summary").json())
print("Events:", requests.get(BASE + "/events", params={"principal": wallet.address}).json())
