import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL: str = os.environ.get("DATABASE_URL", "sqlite:///./marketintel.db")

# Scheduler tuning. All operational values, override per deployment.
FAILURE_THRESHOLD: int = int(os.environ.get("INTEL_FAILURE_THRESHOLD", "3"))
BACKOFF_MULTIPLIER: float = float(os.environ.get("INTEL_BACKOFF_MULTIPLIER", "2.0"))
# 0 disables auto-resume: auto-paused orgs wait for a manual resume
AUTO_RESUME_HOURS: float = float(os.environ.get("INTEL_AUTO_RESUME_HOURS", "0"))
DEACTIVATE_AFTER_MISSES: int = int(os.environ.get("INTEL_DEACTIVATE_AFTER_MISSES", "3"))
JOB_TIMEOUT_SECONDS: float = float(os.environ.get("INTEL_JOB_TIMEOUT_SECONDS", "600"))
MAX_WORKERS: int = int(os.environ.get("INTEL_MAX_WORKERS", "8"))
STALE_RUN_MINUTES: int = int(os.environ.get("INTEL_STALE_RUN_MINUTES", "120"))
RUN_RETENTION_DAYS: int = int(os.environ.get("INTEL_RUN_RETENTION_DAYS", "30"))
CYCLE_MINUTES: int = int(os.environ.get("INTEL_CYCLE_MINUTES", "15"))

LOG_DIR: str = os.environ.get("INTEL_LOG_DIR", "logs")

# Cross-platform duplicate matches scoring below this are not recorded
MATCH_MIN_CONFIDENCE: float = float(os.environ.get("INTEL_MATCH_MIN_CONFIDENCE", "0.70"))
