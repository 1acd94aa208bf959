"""ABI fragments of the deployed Anchor contract consumed by this service."""


def _param(name, type_):
    return {"internalType": type_, "name": name, "type": type_}


def _fn(name, inputs=(), outputs=(), mutability="nonpayable"):
    return {
        "type": "function",
        "name": name,
        "inputs": [_param(n, t) for n, t in inputs],
        "outputs": [_param(n, t) for n, t in outputs],
        "stateMutability": mutability,
    }


def _view(name, inputs=(), outputs=()):
    return _fn(name, inputs, outputs, mutability="view")


def _event(name, inputs):
    return {
        "type": "event",
        "name": name,
        "anonymous": False,
        "inputs": [
            {"indexed": indexed, "internalType": t, "name": n, "type": t}
            for n, t, indexed in inputs
        ],
    }


APPLICATION_TUPLE = {
    "components": [
        _param("applicant", "address"),
        _param("docCids", "string[]"),
        _param("processed", "bool"),
    ],
    "internalType": "struct Anchor.Application",
    "name": "",
    "type": "tuple",
}

ANCHOR_ABI = [
    _view("owner", outputs=[("", "address")]),
    _view("authorizedIssuers", [("", "address")], [("", "bool")]),
    _view("suspendedIssuers", [("", "address")], [("", "bool")]),
    _view("authorizedVerifiers", [("", "address")], [("", "bool")]),
    _view("issuerInfo", [("", "address")], [("", "string")]),
    _fn("setIssuerInfo", [("info", "string")]),
    _fn("addIssuer", [("issuer", "address")]),
    _fn("removeIssuer", [("issuer", "address")]),
    _fn("addVerifier", [("verifier", "address")]),
    _fn("removeVerifier", [("verifier", "address")]),
    _fn("storeHash", [("hash", "bytes32")]),
    _view("isAnchored", [("hash", "bytes32")], [("", "bool")]),
    _fn("revokeHash", [("hash", "bytes32")]),
    _view("revokedHashes", [("", "bytes32")], [("", "bool")]),
    _view(
        "verifyPassport",
        [("hash", "bytes32")],
        [
            ("isAnchored_", "bool"),
            ("isRevoked_", "bool"),
            ("issuer_", "address"),
            ("pType_", "string"),
            ("issuedAt_", "uint256"),
        ],
    ),
    _fn("applyForPassport", [("docCids", "string[]")]),
    _fn("processApplication", [("id", "uint256"), ("hash", "bytes32"), ("pType", "string")]),
    _view("applicationIndex", [("", "address")], [("", "uint256")]),
    {
        "type": "function",
        "name": "getApplication",
        "inputs": [_param("id", "uint256")],
        "outputs": [APPLICATION_TUPLE],
        "stateMutability": "view",
    },
    _view("userHash", [("", "address")], [("", "bytes32")]),
    _event("IssuerAdded", [("issuer", "address", True)]),
    _event("VerifierAdded", [("verifier", "address", True)]),
    _event(
        "HashAnchored",
        [
            ("hash", "bytes32", True),
            ("issuer", "address", True),
            ("user", "address", True),
            ("pType", "string", False),
            ("timestamp", "uint256", False),
        ],
    ),
]
