"""Constants and default values for BillSleuth."""

# Default model configuration
DEFAULT_MODEL = "anthropic:claude-sonnet-4-5"
DEFAULT_TEMPERATURE = 0.0

# Orchestration defaults
DEFAULT_MAX_ITERATIONS = 15
DEFAULT_STREAM_BUFFER = 64

# Directories (relative to the working directory unless overridden)
DEFAULT_DATA_DIR = "data"
DEFAULT_SANDBOX_DIR = "sandbox"

DEFAULT_LOG_LEVEL = "WARNING"

# Read-only corpus files inside the data directory
DATA_FILES = {
    "plans": "billing_plans.json",
    "invoices": "invoices.json",
    "credit_memos": "credit_memos.json",
    "exchange_rates": "exchange_rates.json",
}

# Sandbox collections owned by the proposal store
PROPOSALS_COLLECTION = "proposals"
APPLIED_ACTIONS_COLLECTION = "applied_actions"
AUDIT_LOG_COLLECTION = "audit_log"

# Audit action types
AUDIT_PROPOSAL_CREATED = "proposal_created"
AUDIT_ACTION_APPLIED = "action_applied"
AUDIT_PROPOSAL_REJECTED = "proposal_rejected"
AUDIT_ACTION_ROLLED_BACK = "action_rolled_back"

# Default actors recorded in the audit log
AGENT_ACTOR = "agent"
OPERATOR_ACTOR = "operator"

# Model descriptors - Anthropic Claude models only
SUPPORTED_MODELS = {
    # Claude Sonnet 4.5 - best balance for multi-step tool use
    "anthropic:claude-sonnet-4-5": {
        "provider": "anthropic",
        "name": "claude-sonnet-4-5-20250929",
        "max_output_tokens": 8192,
    },
    # Claude Haiku 4.5 - Fast and cost-effective
    "anthropic:claude-haiku-4-5": {
        "provider": "anthropic",
        "name": "claude-haiku-4-5-20251001",
        "max_output_tokens": 8192,
    },
    # Claude Opus 4.1 - Most capable for complex reasoning
    "anthropic:claude-opus-4-1": {
        "provider": "anthropic",
        "name": "claude-opus-4-1-20250805",
        "max_output_tokens": 8192,
    },
}
