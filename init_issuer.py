from nomad_passport.services import did_ethr
import os

network = os.getenv("DID_NETWORK", "sepolia")

# Generar nueva identidad del emisor (secp256k1 / did:ethr)
identity = did_ethr.generate_issuer_identity(network)

print("✅ DID:", identity["did"])
print("🔑 Address:", identity["address"])
print("\nAdd to your environment (fund the address before issuing):")
print(f"PRIVATE_KEY={identity['privateKey']}")
print(f"DID_NETWORK={network}")
