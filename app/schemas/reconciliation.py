from pydantic import BaseModel


class ReconciliationReportResponse(BaseModel):
    processed: int
    updated: int
    timedOut: int
    errors: int
    durationMs: int
    startedAt: str | None = None
    finishedAt: str | None = None


class ReconciliationStatusResponse(BaseModel):
    isRunning: bool
    schedule: str
    lastRun: str | None = None
    nextRun: str | None = None
    lastReport: ReconciliationReportResponse | None = None


class ForceReconciliationResponse(BaseModel):
    success: bool
    message: str
    report: ReconciliationReportResponse | None = None
