"""
services/mlflow_service.py
--------------------------
MLflow experiment tracking for assistant replies.

What this tracks:
  - Every streamed reply is logged as an MLflow run inside the "expert-chat"
    experiment.
  - Parameters logged: model name, persona, prompt length, transcript turns
  - Metrics logged: response length, latency in milliseconds
  - Tags: persona, source

View the MLflow UI:
  mlflow ui --port 5001
  Then open: http://localhost:5001
"""

from typing import Optional

from expert_chat.core.config import settings
from expert_chat.core.logging import get_logger

logger = get_logger(__name__)

# MLflow experiment name — all runs are grouped under this
EXPERIMENT_NAME = "expert-chat"


def _get_mlflow():
    """
    Lazy import mlflow so the app still starts if mlflow isn't installed.
    Returns the mlflow module or None.
    """
    try:
        import mlflow
        return mlflow
    except ImportError:
        logger.warning("mlflow not installed — tracking disabled. Run: pip install mlflow")
        return None


def setup_mlflow() -> None:
    """
    Called once at application startup.
    Creates the experiment if it doesn't exist.
    Uses local file storage by default (./mlruns folder).
    """
    mlflow = _get_mlflow()
    if mlflow is None:
        return

    tracking_uri = getattr(settings, "MLFLOW_TRACKING_URI", "mlruns")
    mlflow.set_tracking_uri(tracking_uri)

    if mlflow.get_experiment_by_name(EXPERIMENT_NAME) is None:
        mlflow.create_experiment(EXPERIMENT_NAME)
        logger.info("MLflow experiment created", experiment=EXPERIMENT_NAME)

    mlflow.set_experiment(EXPERIMENT_NAME)
    logger.info("MLflow tracking initialised", uri=tracking_uri)


def track_llm_call(
    prompt: str,
    response: str,
    latency_ms: float,
    persona: str,
    turns: int,
    mock: bool = True,
) -> Optional[str]:
    """
    Log a single assistant reply as an MLflow run.

    Returns:
        The MLflow run_id string, or None if tracking failed.
    """
    mlflow = _get_mlflow()
    if mlflow is None:
        return None

    try:
        mlflow.set_experiment(EXPERIMENT_NAME)

        with mlflow.start_run() as run:
            mlflow.log_params({
                "model":         settings.LLM_MODEL if not mock else "mock",
                "persona":       persona,
                "prompt_length": len(prompt),
                "turns":         turns,
                "mock_mode":     mock,
                "environment":   settings.APP_ENV,
            })

            mlflow.log_metrics({
                "latency_ms":       latency_ms,
                "response_length":  len(response),
                # Tokens are approximated at ~4 chars per token
                "approx_tokens_in":  len(prompt) / 4,
                "approx_tokens_out": len(response) / 4,
            })

            mlflow.set_tags({
                "persona": persona,
                "source":  "chat",
            })

            run_id = run.info.run_id
            logger.info("MLflow run logged", run_id=run_id, latency_ms=latency_ms)
            return run_id

    except Exception as exc:
        # Never let tracking failures break the reply
        logger.warning("MLflow tracking failed (non-fatal)", error=str(exc))
        return None
