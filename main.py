import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Response
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from config import get_settings
from csv_utils import export_month_csv, export_trends_csv
from database import Base, SessionLocal, engine, session_scope
from errors import ConflictError, NotFoundError, StorageError, ValidationError
from schemas import (
    BudgetCopyIn,
    BudgetIn,
    CategoryIn,
    ExportFormat,
    GoalIn,
    MonthImportIn,
    MonthIn,
    RecurringApplyIn,
    RecurringTemplateIn,
    RecurringTemplateUpdate,
    TransactionIn,
)
from services import (
    BudgetService,
    CategoryService,
    GoalService,
    MonthService,
    MonthTransferService,
    RecurringTemplateService,
    SummaryService,
    TransactionService,
    category_payload,
    seed_default_categories,
    template_payload,
    transaction_payload,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Money Tracker")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    Base.metadata.create_all(bind=engine)
    if settings.seed_categories:
        with session_scope() as session:
            seed_default_categories(session)


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, StorageError):
        return HTTPException(status_code=500, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def csv_response(content: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/months")
def list_months(db: Session = Depends(get_db)):
    return {"months": MonthService(db).list_keys()}


@app.post("/api/months", status_code=201)
def ensure_month_endpoint(payload: MonthIn, db: Session = Depends(get_db)):
    month = MonthService(db).ensure(payload.month_key)
    return {"id": month.id, "month_key": month.month_key}


@app.delete("/api/months/{month_key}")
def reset_month(month_key: str, db: Session = Depends(get_db)):
    try:
        removed = MonthService(db).reset(month_key)
    except (ValidationError, NotFoundError) as exc:
        raise http_error(exc) from exc
    return {"month_key": month_key, "removed": removed}


@app.get("/api/categories")
def list_categories(db: Session = Depends(get_db)):
    return [category_payload(c) for c in CategoryService(db).list_all()]


@app.post("/api/categories", status_code=201)
def create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).create(payload)
    except ConflictError as exc:
        raise http_error(exc) from exc
    return category_payload(category)


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: int, payload: CategoryIn, db: Session = Depends(get_db)
):
    try:
        category = CategoryService(db).update(category_id, payload)
    except (NotFoundError, ConflictError) as exc:
        raise http_error(exc) from exc
    return category_payload(category)


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except (NotFoundError, ConflictError) as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/transactions")
def list_transactions(month: str = Query(...), db: Session = Depends(get_db)):
    try:
        transactions = TransactionService(db).list_for_month(month)
    except ValidationError as exc:
        raise http_error(exc) from exc
    return [transaction_payload(t) for t in transactions]


@app.post("/api/transactions", status_code=201)
def create_transaction(payload: TransactionIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).create(payload)
    except (ValidationError, NotFoundError) as exc:
        raise http_error(exc) from exc
    return transaction_payload(txn)


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int, payload: TransactionIn, db: Session = Depends(get_db)
):
    try:
        txn = TransactionService(db).update(transaction_id, payload)
    except (ValidationError, NotFoundError) as exc:
        raise http_error(exc) from exc
    return transaction_payload(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except NotFoundError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/summary")
def month_summary(month: str = Query(...), db: Session = Depends(get_db)):
    try:
        return SummaryService(db).month_summary(month)
    except ValidationError as exc:
        raise http_error(exc) from exc


@app.get("/api/budgets")
def list_budgets(month: str = Query(...), db: Session = Depends(get_db)):
    try:
        budgets = BudgetService(db).list_for_month(month)
    except ValidationError as exc:
        raise http_error(exc) from exc
    return [
        {
            "category_id": b.category_id,
            "category_name": b.category.name,
            "category_color": b.category.color,
            "amount_cents": b.amount_cents,
        }
        for b in budgets
    ]


@app.post("/api/budgets")
def set_budget(payload: BudgetIn, db: Session = Depends(get_db)):
    try:
        budget = BudgetService(db).set(payload)
    except (ValidationError, NotFoundError) as exc:
        raise http_error(exc) from exc
    return {
        "month_key": payload.month_key,
        "category_id": budget.category_id,
        "amount_cents": budget.amount_cents,
    }


@app.delete("/api/budgets", status_code=204)
def clear_budget(
    month: str = Query(...),
    category_id: int = Query(...),
    db: Session = Depends(get_db),
):
    try:
        BudgetService(db).clear(month, category_id)
    except (ValidationError, NotFoundError) as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/budgets/copy")
def copy_budgets(payload: BudgetCopyIn, db: Session = Depends(get_db)):
    try:
        copied = BudgetService(db).copy(payload)
    except ValidationError as exc:
        raise http_error(exc) from exc
    return {"from_month": payload.from_month, "to_month": payload.to_month, "copied": copied}


@app.get("/api/goal")
def get_goal(month: str = Query(...), db: Session = Depends(get_db)):
    try:
        cents = GoalService(db).get(month)
    except ValidationError as exc:
        raise http_error(exc) from exc
    return {"month_key": month, "savings_goal_cents": cents}


@app.post("/api/goal")
def set_goal(payload: GoalIn, db: Session = Depends(get_db)):
    goal = GoalService(db).set(payload)
    return {"month_key": payload.month_key, "savings_goal_cents": goal.savings_goal_cents}


@app.get("/api/trends")
def trends(months: int = Query(6, ge=1, le=120), db: Session = Depends(get_db)):
    return SummaryService(db).trends(months)


@app.get("/api/trends/export")
def export_trends(months: int = Query(6, ge=1, le=120), db: Session = Depends(get_db)):
    points = SummaryService(db).trends(months)
    return csv_response(export_trends_csv(points), f"trends_{months}m.csv")


@app.get("/api/recurring")
def list_recurring(month: Optional[str] = None, db: Session = Depends(get_db)):
    service = RecurringTemplateService(db)
    try:
        applied = service.applied_ids(month) if month else None
    except ValidationError as exc:
        raise http_error(exc) from exc
    return [
        template_payload(t, None if applied is None else t.id in applied)
        for t in service.list_all()
    ]


@app.post("/api/recurring", status_code=201)
def create_recurring(payload: RecurringTemplateIn, db: Session = Depends(get_db)):
    try:
        template = RecurringTemplateService(db).create(payload)
    except NotFoundError as exc:
        raise http_error(exc) from exc
    return template_payload(template)


@app.post("/api/recurring/apply")
def apply_recurring(payload: RecurringApplyIn, db: Session = Depends(get_db)):
    try:
        result = RecurringTemplateService(db).apply(payload.month_key, payload.overrides)
    except (ValidationError, StorageError) as exc:
        raise http_error(exc) from exc
    return result.as_dict()


@app.put("/api/recurring/{template_id}")
def update_recurring(
    template_id: int, payload: RecurringTemplateUpdate, db: Session = Depends(get_db)
):
    try:
        template = RecurringTemplateService(db).update(template_id, payload)
    except (ValidationError, NotFoundError) as exc:
        raise http_error(exc) from exc
    return template_payload(template)


@app.delete("/api/recurring/{template_id}", status_code=204)
def delete_recurring(template_id: int, db: Session = Depends(get_db)):
    try:
        RecurringTemplateService(db).delete(template_id)
    except NotFoundError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/recurring/{template_id}/applications")
def recurring_applications(template_id: int, db: Session = Depends(get_db)):
    try:
        return RecurringTemplateService(db).applications(template_id)
    except NotFoundError as exc:
        raise http_error(exc) from exc


@app.get("/api/month/export")
def export_month(
    month: str = Query(...),
    format: ExportFormat = Query("json"),
    db: Session = Depends(get_db),
):
    service = MonthTransferService(db)
    try:
        if format == "csv":
            content = export_month_csv(service.export_transactions(month))
            return csv_response(content, f"month_{month}.csv")
        return service.export(month)
    except ValidationError as exc:
        raise http_error(exc) from exc


@app.post("/api/month/import")
def import_month(payload: MonthImportIn, db: Session = Depends(get_db)):
    try:
        summary = MonthTransferService(db).import_month(payload)
    except (ValidationError, ConflictError) as exc:
        raise http_error(exc) from exc
    return {
        "month_key": summary.month_key,
        "transactions": summary.transactions,
        "budgets": summary.budgets,
        "categories_created": summary.categories_created,
        "overwritten": summary.overwritten,
    }
