import json, os
from bamboohold import Wallet
from bamboohold_app.config import KEYS_PATH
from bamboohold_app.keys import write_key_material

keys = write_key_material(KEYS_PATH)

os.makedirs("secrets", exist_ok=True)
wallet = Wallet()
with open("secrets/demo_wallet.json", "w", encoding="utf-8") as f:
    json.dump({
        "address": wallet.address,
        "public_key_b64": wallet.public_key_b64,
        "private_key_b64": wallet.export_private_key_b64(),
    }, f, indent=2)

print(f"Generated coprocessor keys at {KEYS_PATH} (input verifier {keys['input_kid']}).")
print(f"Generated demo wallet {wallet.address} at secrets/demo_wallet.json.")
