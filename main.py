import logging
import re
from contextlib import asynccontextmanager
from typing import Annotated, Literal, Optional

import stripe
from bson.errors import InvalidId
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import (
    Principal,
    clear_token_cookie,
    create_access_token,
    get_current_principal,
    set_token_cookie,
    verify_admin,
    verify_chef,
)
from config import LOG_LEVEL, PORT, SITE_DOMAIN, check_production_settings
from database import (
    FAVORITES,
    MEALS,
    NEWEST_FIRST,
    ORDERS,
    REVIEWS,
    ROLE_REQUESTS,
    USERS,
    count_documents,
    create_document,
    db,
    delete_document,
    ensure_indexes,
    get_db,
    get_document,
    get_document_by_id,
    get_documents,
    parse_object_id,
    update_document,
    update_document_by_id,
)
from payments import OrderAlreadyPaid, OrderNotFound, OrderPaymentEngine, PaymentProcessingError
from roles import RoleRequestConflict, RoleRequestNotFound, RoleWorkflow
from schemas import (
    CheckoutRequest,
    FavoriteCreate,
    MealCreate,
    MealUpdate,
    OrderCreate,
    OrderStatusUpdate,
    ReviewCreate,
    ReviewUpdate,
    RoleDecision,
    RoleRequestCreate,
    TokenRequest,
    UserCreate,
    UserStatusUpdate,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    check_production_settings()
    if db is not None:
        ensure_indexes(db)
    yield


app = FastAPI(title="Local Chef Bazaar API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[SITE_DOMAIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
AdminPrincipal = Annotated[Principal, Depends(verify_admin)]
ChefUser = Annotated[dict, Depends(verify_chef)]
Db = Annotated[Database, Depends(get_db)]


# ===================== Error responses =====================
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"][1:]) or error["loc"][0]
        problems.append(f"{field}: {error['msg']}")
    message = "; ".join(problems)
    return JSONResponse(status_code=422, content={"success": False, "message": message})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"success": False, "message": "Database operation failed"})


@app.exception_handler(InvalidId)
async def invalid_id_handler(request: Request, exc: InvalidId):
    logger.error(f"Invalid id on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"success": False, "message": "Invalid id"})


# ===================== Engines =====================
def get_checkout():
    """Stripe checkout session resource."""
    return stripe.checkout.Session


def get_role_workflow(database: Db) -> RoleWorkflow:
    return RoleWorkflow(database)


def get_payment_engine(database: Db, checkout=Depends(get_checkout)) -> OrderPaymentEngine:
    return OrderPaymentEngine(database, checkout)


# ===================== Public Endpoints =====================
@app.get("/")
def root():
    return {"success": True, "message": "Local Chef Bazaar API running"}


@app.get("/health")
def health_check():
    response = {"success": True, "database": "Not Configured", "collections": []}
    try:
        if db is not None:
            response["collections"] = db.list_collection_names()
            response["database"] = "Connected"
    except PyMongoError as e:
        response["success"] = False
        response["database"] = f"Error: {str(e)[:80]}"
    return response


# ===================== Auth =====================
@app.post("/jwt")
def issue_token(payload: TokenRequest, response: Response):
    token = create_access_token(payload.email, payload.role)
    set_token_cookie(response, token)
    return {"success": True}


@app.post("/logout")
def logout(response: Response):
    clear_token_cookie(response)
    return {"success": True}


# ===================== Users =====================
@app.get("/users")
def list_users(database: Db, admin: AdminPrincipal):
    return {"success": True, "data": get_documents(database, USERS, sort=NEWEST_FIRST)}


@app.get("/users/{email}")
def get_user(email: str, database: Db, principal: CurrentPrincipal):
    user = get_document(database, USERS, {"email": email})
    if not user:
        raise HTTPException(404, "User not found")
    return {"success": True, "data": user}


@app.get("/users/{email}/role")
def get_user_role(email: str, database: Db, principal: CurrentPrincipal):
    user = get_document(database, USERS, {"email": email})
    if not user:
        raise HTTPException(404, "User not found")
    return {"success": True, "role": user.get("role", "user")}


@app.post("/users")
def create_user(payload: UserCreate, database: Db):
    if database[USERS].find_one({"email": payload.email}):
        return {"success": False, "message": "user exists"}
    user = payload.model_dump(by_alias=True, exclude_none=True)
    user.update(role="user", status="active")
    try:
        user_id = create_document(database, USERS, user)
    except DuplicateKeyError:
        return {"success": False, "message": "user exists"}
    return {"success": True, "insertedId": user_id}


@app.patch("/users/{email}")
def update_user_status(email: str, payload: UserStatusUpdate, database: Db, admin: AdminPrincipal):
    modified = update_document(database, USERS, {"email": email}, payload)
    return {"success": True, "modifiedCount": modified}


# ===================== Role requests =====================
@app.post("/role-requests")
def submit_role_request(
    payload: RoleRequestCreate,
    principal: CurrentPrincipal,
    workflow: Annotated[RoleWorkflow, Depends(get_role_workflow)],
):
    if payload.user_email != principal.email:
        raise HTTPException(403, "Forbidden access")
    try:
        record = workflow.submit(payload.user_email, payload.user_name, payload.request_type)
    except RoleRequestConflict as e:
        raise HTTPException(409, str(e))
    return {"success": True, "data": record}


@app.get("/role-requests")
def list_role_requests(
    admin: AdminPrincipal,
    workflow: Annotated[RoleWorkflow, Depends(get_role_workflow)],
    status: Optional[Literal["pending", "approved", "rejected"]] = None,
):
    return {"success": True, "data": workflow.list_requests(status)}


@app.patch("/role-requests")
def decide_role_request(
    payload: RoleDecision,
    admin: AdminPrincipal,
    workflow: Annotated[RoleWorkflow, Depends(get_role_workflow)],
):
    try:
        outcome = workflow.decide(payload.user_email, payload.request_type, payload.action)
    except RoleRequestNotFound as e:
        raise HTTPException(404, str(e))
    return {"success": True, **outcome}


# ===================== Meals =====================
@app.get("/meals")
def list_meals(
    database: Db,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort: Optional[Literal["asc", "desc"]] = None,
    chef_email: Optional[str] = Query(None, alias="chefEmail"),
    search: Optional[str] = None,
):
    filter_q = {}
    if chef_email:
        filter_q["chefEmail"] = chef_email
    if search:
        filter_q["foodName"] = {"$regex": re.escape(search), "$options": "i"}
    order = [("price", 1 if sort == "asc" else -1)] if sort else NEWEST_FIRST
    meals = get_documents(database, MEALS, filter_q, sort=order, skip=(page - 1) * limit, limit=limit)
    total = count_documents(database, MEALS, filter_q)
    return {"success": True, "data": meals, "total": total, "page": page, "limit": limit}


@app.get("/meals/featured")
def list_featured_meals(database: Db):
    return {"success": True, "data": get_documents(database, MEALS, {"featured": True}, sort=NEWEST_FIRST, limit=6)}


@app.get("/meals/{meal_id}")
def get_meal(meal_id: str, database: Db):
    meal = get_document_by_id(database, MEALS, meal_id)
    if not meal:
        raise HTTPException(404, "Meal not found")
    return {"success": True, "data": meal}


@app.post("/meals")
def create_meal(payload: MealCreate, database: Db, chef: ChefUser):
    meal = payload.model_dump(by_alias=True, exclude_none=True)
    meal.update(chefEmail=chef["email"], chefId=chef.get("chefId"))
    meal_id = create_document(database, MEALS, meal)
    return {"success": True, "insertedId": meal_id}


def _owned_meal(database: Database, meal_id: str, chef: dict) -> dict:
    meal = get_document_by_id(database, MEALS, meal_id)
    if not meal:
        raise HTTPException(404, "Meal not found")
    if meal.get("chefEmail") != chef["email"]:
        raise HTTPException(403, "Forbidden access")
    return meal


@app.patch("/meals/{meal_id}")
def update_meal(meal_id: str, payload: MealUpdate, database: Db, chef: ChefUser):
    _owned_meal(database, meal_id, chef)
    modified = update_document_by_id(database, MEALS, meal_id, payload)
    return {"success": True, "modifiedCount": modified}


@app.delete("/meals/{meal_id}")
def delete_meal(meal_id: str, database: Db, chef: ChefUser):
    _owned_meal(database, meal_id, chef)
    deleted = delete_document(database, MEALS, {"_id": parse_object_id(meal_id)})
    return {"success": True, "deletedCount": deleted}


# ===================== Reviews =====================
@app.get("/reviews")
def list_reviews(
    database: Db,
    food_id: Optional[str] = Query(None, alias="foodId"),
    user_email: Optional[str] = Query(None, alias="userEmail"),
):
    filter_q = {}
    if food_id:
        filter_q["foodId"] = food_id
    if user_email:
        filter_q["userEmail"] = user_email
    return {"success": True, "data": get_documents(database, REVIEWS, filter_q, sort=NEWEST_FIRST)}


@app.post("/reviews")
def create_review(payload: ReviewCreate, database: Db, principal: CurrentPrincipal):
    review = payload.model_dump(by_alias=True, exclude_none=True)
    review["userEmail"] = principal.email
    review_id = create_document(database, REVIEWS, review)
    return {"success": True, "insertedId": review_id}


def _own_review(database: Database, review_id: str, principal: Principal) -> dict:
    review = get_document_by_id(database, REVIEWS, review_id)
    if not review:
        raise HTTPException(404, "Review not found")
    if review.get("userEmail") != principal.email:
        raise HTTPException(403, "Forbidden access")
    return review


@app.patch("/reviews/{review_id}")
def update_review(review_id: str, payload: ReviewUpdate, database: Db, principal: CurrentPrincipal):
    _own_review(database, review_id, principal)
    modified = update_document_by_id(database, REVIEWS, review_id, payload)
    return {"success": True, "modifiedCount": modified}


@app.delete("/reviews/{review_id}")
def delete_review(review_id: str, database: Db, principal: CurrentPrincipal):
    _own_review(database, review_id, principal)
    deleted = delete_document(database, REVIEWS, {"_id": parse_object_id(review_id)})
    return {"success": True, "deletedCount": deleted}


# ===================== Favorites =====================
@app.get("/favorites")
def list_favorites(database: Db, principal: CurrentPrincipal):
    favorites = get_documents(database, FAVORITES, {"userEmail": principal.email}, sort=NEWEST_FIRST)
    return {"success": True, "data": favorites}


@app.post("/favorites")
def add_favorite(payload: FavoriteCreate, database: Db, principal: CurrentPrincipal):
    if database[FAVORITES].find_one({"userEmail": principal.email, "foodId": payload.food_id}):
        raise HTTPException(409, "Meal already in favorites")
    favorite = payload.model_dump(by_alias=True, exclude_none=True)
    favorite["userEmail"] = principal.email
    try:
        favorite_id = create_document(database, FAVORITES, favorite)
    except DuplicateKeyError:
        raise HTTPException(409, "Meal already in favorites")
    return {"success": True, "insertedId": favorite_id}


@app.delete("/favorites/{favorite_id}")
def remove_favorite(favorite_id: str, database: Db, principal: CurrentPrincipal):
    deleted = delete_document(
        database, FAVORITES, {"_id": parse_object_id(favorite_id), "userEmail": principal.email}
    )
    if not deleted:
        raise HTTPException(404, "Favorite not found")
    return {"success": True, "deletedCount": deleted}


# ===================== Orders =====================
@app.get("/orders")
def list_orders(
    database: Db,
    principal: CurrentPrincipal,
    payment_status: Optional[Literal["unpaid", "paid"]] = Query(None, alias="paymentStatus"),
):
    filter_q = {"userEmail": principal.email}
    if payment_status:
        filter_q["paymentStatus"] = payment_status
    return {"success": True, "data": get_documents(database, ORDERS, filter_q, sort=NEWEST_FIRST)}


@app.get("/orders/chef/{chef_id}")
def list_chef_orders(chef_id: str, database: Db, chef: ChefUser):
    if chef.get("chefId") != chef_id:
        raise HTTPException(403, "Forbidden access")
    return {"success": True, "data": get_documents(database, ORDERS, {"chefId": chef_id}, sort=NEWEST_FIRST)}


@app.get("/orders/{order_id}")
def get_order(order_id: str, database: Db, principal: CurrentPrincipal):
    order = get_document_by_id(database, ORDERS, order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    if order.get("userEmail") != principal.email:
        raise HTTPException(403, "Forbidden access")
    return {"success": True, "data": order}


@app.post("/orders")
def create_order(
    payload: OrderCreate,
    principal: CurrentPrincipal,
    engine: Annotated[OrderPaymentEngine, Depends(get_payment_engine)],
):
    order = engine.create_order(principal.email, payload.model_dump(by_alias=True, exclude_none=True))
    return {"success": True, **order}


@app.patch("/orders/{order_id}")
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    chef: ChefUser,
    engine: Annotated[OrderPaymentEngine, Depends(get_payment_engine)],
):
    try:
        modified = engine.update_order_status(order_id, payload.order_status, chef.get("chefId"))
    except OrderNotFound as e:
        raise HTTPException(404, str(e))
    except PermissionError as e:
        raise HTTPException(403, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"success": True, "modifiedCount": modified}


@app.post("/orders/payment-checkout-session")
def create_checkout_session(
    payload: CheckoutRequest,
    principal: CurrentPrincipal,
    engine: Annotated[OrderPaymentEngine, Depends(get_payment_engine)],
):
    try:
        url = engine.create_checkout_session(payload.order_id, payload.meal_name, payload.total_price, principal.email)
    except OrderNotFound as e:
        raise HTTPException(404, str(e))
    except PermissionError as e:
        raise HTTPException(403, str(e))
    except OrderAlreadyPaid as e:
        raise HTTPException(409, str(e))
    except PaymentProcessingError as e:
        logger.exception(f"Checkout session failed for order {payload.order_id}")
        raise HTTPException(500, str(e))
    return {"success": True, "url": url}


@app.patch("/payment-success")
def confirm_payment(
    principal: CurrentPrincipal,
    engine: Annotated[OrderPaymentEngine, Depends(get_payment_engine)],
    session_id: str = Query(...),
):
    try:
        result = engine.confirm_payment(session_id)
    except PaymentProcessingError as e:
        logger.exception(f"Payment confirmation failed for session {session_id}")
        raise HTTPException(500, str(e))
    return {"success": True, **result}


# ===================== Admin =====================
@app.get("/admin/stats")
def admin_stats(database: Db, admin: AdminPrincipal):
    return {
        "success": True,
        "users": count_documents(database, USERS),
        "chefs": count_documents(database, USERS, {"role": "chef"}),
        "pendingRoleRequests": count_documents(database, ROLE_REQUESTS, {"status": "pending"}),
        "meals": count_documents(database, MEALS),
        "orders": count_documents(database, ORDERS),
        "paidOrders": count_documents(database, ORDERS, {"paymentStatus": "paid"}),
        "deliveredOrders": count_documents(database, ORDERS, {"orderStatus": "delivered"}),
    }


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=LOG_LEVEL)
    uvicorn.run(app, host="0.0.0.0", port=PORT)
