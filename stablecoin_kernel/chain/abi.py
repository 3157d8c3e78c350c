"""Contract ABIs (subsets) for the policy registry and the token."""

REGISTRY_ABI = [
    {
        "name": "createPolicyWithAccounts",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "admin", "type": "address"},
            {"name": "policyType", "type": "uint8"},
            {"name": "accounts", "type": "address[]"},
        ],
        "outputs": [{"name": "newPolicyId", "type": "uint64"}],
    },
    {
        "name": "modifyPolicyWhitelist",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "policyId", "type": "uint64"},
            {"name": "account", "type": "address"},
            {"name": "allowed", "type": "bool"},
        ],
        "outputs": [],
    },
    {
        "name": "isAuthorized",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "policyId", "type": "uint64"},
            {"name": "user", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "policyIdCounter",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint64"}],
    },
    {
        "name": "policyData",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "policyId", "type": "uint64"}],
        "outputs": [
            {"name": "policyType", "type": "uint8"},
            {"name": "admin", "type": "address"},
        ],
    },
]

TOKEN_ABI = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "mint",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "name": "transferPolicyId",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint64"}],
    },
    {
        "name": "changeTransferPolicyId",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "policyId", "type": "uint64"}],
        "outputs": [],
    },
]
