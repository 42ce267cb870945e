CONFIG_FILE_ENV = "TASK_ORCHESTRATOR_CONFIG"
MAX_CONCURRENT_TASKS_ENV = "MAX_CONCURRENT_TASKS"
TICK_INTERVAL_ENV = "TASK_TICK_INTERVAL_SECONDS"
LOG_LEVEL_ENV = "TASK_ORCHESTRATOR_LOG_LEVEL"

DEFAULT_MAX_CONCURRENT_TASKS = 10
DEFAULT_TICK_INTERVAL_SECONDS = 5.0
DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 10.0
DEFAULT_LOG_LEVEL = "INFO"

DEFAULT_AGENT_TIMEOUT_SECONDS = 60.0
DEFAULT_AGENT_MAX_CONCURRENT_TASKS = 1

EVENT_HISTORY_LIMIT = 500

# Duration heuristics used when estimating a decomposed project.
DEFAULT_TASK_ESTIMATE_HOURS = 16
WORK_HOURS_PER_DAY = 8
SCHEDULE_BUFFER_FACTOR = 1.2

TITLE_MAX_CHARS = 100
NOTIFICATION_BODY_MAX_CHARS = 200
