from prassist.state.run_log import RunLog, new_run_id

__all__ = ["RunLog", "new_run_id"]
