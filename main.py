import logging
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from database import SessionLocal
from models import RecomputeTrigger
from scheduler import SchedulerManager
from schemas import (
    BankIn,
    BulkTransactionUpdateIn,
    RecomputeIn,
    RecomputeJobOut,
    TagIn,
    TagsSummaryOut,
    TagUpdateIn,
    TransactionUpdateIn,
)
from services import (
    AnalysisService,
    BankService,
    ConflictError,
    JobService,
    NotFoundError,
    TagService,
    TagsSummaryService,
    TransactionService,
)
from store import DocumentStore, StoreError, build_store

app = FastAPI(title="Tag Ledger")

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def get_store() -> Iterator[DocumentStore]:
    db = SessionLocal()
    try:
        yield build_store(db)
    finally:
        db.close()


def get_notify():
    return scheduler_manager.enqueue_recompute


@app.exception_handler(StoreError)
def store_error_handler(_request, exc: StoreError):
    logging.error(f"store_error: {exc}")
    return JSONResponse(status_code=502, content={"detail": "Storage request failed"})


def _http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.get("/api/tags")
def list_tags(userId: str = Query(..., min_length=1), store=Depends(get_store)):
    return [tag.to_document() for tag in TagService(store, userId).list_all()]


@app.post("/api/tags")
def create_tag(data: TagIn, store=Depends(get_store)):
    try:
        tag = TagService(store, data.user_id).create(data.name, data.color)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return tag.to_document()


@app.put("/api/tags/{tag_id}")
def update_tag(
    tag_id: str,
    data: TagUpdateIn,
    userId: str = Query(..., min_length=1),
    store=Depends(get_store),
    notify=Depends(get_notify),
):
    try:
        tag = TagService(store, userId, notify).update(tag_id, data.name, data.color)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return tag.to_document()


@app.delete("/api/tags/{tag_id}")
def delete_tag(
    tag_id: str,
    userId: str = Query(..., min_length=1),
    store=Depends(get_store),
    notify=Depends(get_notify),
):
    try:
        changed = TagService(store, userId, notify).delete(tag_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"success": True, "transactionsUpdated": changed}


@app.get("/api/banks")
def list_banks(store=Depends(get_store)):
    return BankService(store).list_all()


@app.post("/api/banks")
def create_bank(data: BankIn, store=Depends(get_store)):
    try:
        return BankService(store).create(data.bank_name)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/api/transactions/update")
def update_transaction(
    data: TransactionUpdateIn,
    store=Depends(get_store),
    notify=Depends(get_notify),
):
    try:
        TransactionService(store, notify).update(
            data.bank_name, data.transaction_id, data.transaction_data, data.tags
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"success": True}


@app.post("/api/transactions/bulk-update")
def bulk_update_transactions(
    data: BulkTransactionUpdateIn,
    store=Depends(get_store),
    notify=Depends(get_notify),
):
    results = TransactionService(store, notify).bulk_update(data.updates)
    failed = sum(1 for result in results if not result["success"])
    return {
        "success": failed == 0,
        "updated": len(results) - failed,
        "failed": failed,
        "results": results,
    }


@app.get("/api/reports/tags-summary", response_model=Optional[TagsSummaryOut])
def get_tags_summary(userId: str = Query(..., min_length=1), store=Depends(get_store)):
    return TagsSummaryService(store).get(userId)


@app.post("/api/reports/tags-summary", response_model=RecomputeJobOut)
def recompute_tags_summary(data: RecomputeIn, store=Depends(get_store)):
    try:
        return TagsSummaryService(store).recompute(data.user_id, RecomputeTrigger.manual)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/api/reports/tags-summary/background", status_code=202)
def enqueue_tags_summary(data: RecomputeIn, notify=Depends(get_notify)):
    notify(data.user_id, RecomputeTrigger.manual)
    return {"queued": True, "userId": data.user_id}


@app.get("/api/jobs", response_model=list[RecomputeJobOut])
def list_jobs(
    userId: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=200),
    store=Depends(get_store),
):
    return JobService(store).list_for_user(userId, limit)


@app.get("/api/jobs/{job_id}", response_model=RecomputeJobOut)
def get_job(job_id: str, store=Depends(get_store)):
    try:
        return JobService(store).get(job_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/debug/crdr-analysis")
def crdr_analysis(
    userId: str = Query(..., min_length=1),
    bankName: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=1000),
    store=Depends(get_store),
):
    return AnalysisService(store).crdr_analysis(userId, bankName, limit)


@app.get("/api/debug/tag-count")
def tag_count(
    userId: str = Query(..., min_length=1),
    tagName: str = Query(..., min_length=1),
    store=Depends(get_store),
):
    return AnalysisService(store).tag_count(userId, tagName)


@app.get("/api/debug/tags-summary-check")
def tags_summary_check(userId: str = Query(..., min_length=1), store=Depends(get_store)):
    try:
        return TagsSummaryService(store).check(userId)
    except ValueError as exc:
        raise _http_error(exc) from exc
