"""
Minimal ABIs of the IBC contracts deployed on Besu.

Client states, consensus states and connection ends cross the contract
boundary as their canonical byte encodings (ibc_types.*.to_bytes), so only
the call signatures the harness uses are declared here.
"""

_PREFIX_TUPLE = {
    "name": "prefix",
    "type": "tuple",
    "components": [{"name": "key_prefix", "type": "bytes"}],
}

_COUNTERPARTY_TUPLE = {
    "name": "counterparty",
    "type": "tuple",
    "components": [
        {"name": "client_id", "type": "string"},
        {"name": "connection_id", "type": "string"},
        _PREFIX_TUPLE,
    ],
}

_VERSION_COMPONENTS = [
    {"name": "identifier", "type": "string"},
    {"name": "features", "type": "string[]"},
]


def _fn(name, inputs, outputs=(), mutability="nonpayable"):
    return {
        "type": "function",
        "name": name,
        "inputs": list(inputs),
        "outputs": list(outputs),
        "stateMutability": mutability,
    }


IBC_CLIENT_ABI = [
    _fn(
        "createClient",
        [
            {"name": "clientId", "type": "string"},
            {"name": "clientStateBytes", "type": "bytes"},
            {"name": "consensusStateBytes", "type": "bytes"},
        ],
    ),
    _fn(
        "updateClient",
        [
            {"name": "clientId", "type": "string"},
            {
                "name": "header",
                "type": "tuple",
                "components": [
                    {"name": "besuHeaderRLPBytes", "type": "bytes"},
                    {"name": "seals", "type": "bytes[]"},
                    {"name": "trustedHeight", "type": "uint64"},
                    {"name": "accountStateProof", "type": "bytes"},
                ],
            },
        ],
    ),
    _fn(
        "verifyClientState",
        [
            {"name": "clientStateBytes", "type": "bytes"},
            {"name": "clientId", "type": "string"},
            {"name": "height", "type": "uint64"},
            {"name": "prefix", "type": "bytes"},
            {"name": "counterpartyClientIdentifier", "type": "string"},
            {"name": "proof", "type": "bytes"},
            {"name": "counterpartyClientStateBytes", "type": "bytes"},
        ],
        [{"name": "", "type": "bool"}],
        "view",
    ),
]

IBC_CONNECTION_ABI = [
    _fn(
        "connectionOpenInit",
        [
            {"name": "clientId", "type": "string"},
            {"name": "connectionId", "type": "string"},
            _COUNTERPARTY_TUPLE,
            {"name": "delayPeriod", "type": "uint64"},
        ],
    ),
    _fn(
        "connectionOpenTry",
        [
            {
                "name": "msg_",
                "type": "tuple",
                "components": [
                    {"name": "connectionId", "type": "string"},
                    _COUNTERPARTY_TUPLE,
                    {"name": "delayPeriod", "type": "uint64"},
                    {"name": "clientId", "type": "string"},
                    {
                        "name": "counterpartyVersions",
                        "type": "tuple[]",
                        "components": _VERSION_COMPONENTS,
                    },
                    {"name": "proofInit", "type": "bytes"},
                    {"name": "proofHeight", "type": "uint64"},
                ],
            }
        ],
    ),
    _fn(
        "connectionOpenAck",
        [
            {
                "name": "msg_",
                "type": "tuple",
                "components": [
                    {"name": "connectionId", "type": "string"},
                    {"name": "counterpartyConnectionID", "type": "string"},
                    {"name": "version", "type": "tuple", "components": _VERSION_COMPONENTS},
                    {"name": "proofTry", "type": "bytes"},
                    {"name": "proofHeight", "type": "uint64"},
                ],
            }
        ],
    ),
    _fn(
        "connectionOpenConfirm",
        [
            {
                "name": "msg_",
                "type": "tuple",
                "components": [
                    {"name": "connectionId", "type": "string"},
                    {"name": "proofAck", "type": "bytes"},
                    {"name": "proofHeight", "type": "uint64"},
                ],
            }
        ],
    ),
]

PROVABLE_STORE_ABI = [
    _fn(
        "getClientState",
        [{"name": "clientId", "type": "string"}],
        [{"name": "", "type": "bytes"}, {"name": "", "type": "bool"}],
        "view",
    ),
    _fn(
        "getConnection",
        [{"name": "connectionId", "type": "string"}],
        [{"name": "", "type": "bytes"}, {"name": "", "type": "bool"}],
        "view",
    ),
    _fn(
        "clientStateCommitmentSlot",
        [{"name": "clientId", "type": "string"}],
        [{"name": "", "type": "bytes32"}],
        "view",
    ),
    _fn(
        "connectionCommitmentSlot",
        [{"name": "connectionId", "type": "string"}],
        [{"name": "", "type": "bytes32"}],
        "view",
    ),
    _fn("getCommitmentPrefix", [], [{"name": "", "type": "bytes"}], "view"),
]
