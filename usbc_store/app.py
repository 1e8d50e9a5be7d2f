import math
import os
from datetime import datetime, timedelta
from typing import Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import JWTManager, create_access_token
from flask_pymongo import PyMongo
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
from werkzeug.exceptions import HTTPException

from .auth import check_password, hash_password
from .errors import Conflict, NotFound, StoreError, ValidationError
from .lifecycle import OrderLifecycleManager
from .orders import OrderStore
from .payments import DEFAULT_API_BASE, DEFAULT_BACK_URLS, MercadoPagoClient
from .uploads import ALLOWED_IMAGE_EXTENSIONS, CloudinaryUploader
from .webhooks import DEFAULT_SIGNATURE_HEADER

load_dotenv()


def load_config_from_env() -> Dict[str, object]:
    return {
        "MONGO_URI": os.getenv("MONGODB_URI")
        or os.getenv("MONGO_URI", "mongodb://localhost:27017/usbc"),
        "JWT_SECRET_KEY": os.getenv("JWT_SECRET", "change-me-in-production"),
        "JWT_ISSUER": os.getenv("JWT_ISSUER", "usbc-store"),
        "JWT_ACCESS_TOKEN_EXPIRES": timedelta(hours=1),
        "MAX_CONTENT_LENGTH": int(os.getenv("MAX_UPLOAD_SIZE_MB", "16")) * 1024 * 1024,
        "CORS_ALLOWED_ORIGINS": os.getenv("CORS_ALLOWED_ORIGINS", "*"),
        "MERCADO_PAGO_ACCESS_TOKEN": (
            os.getenv("MERCADO_PAGO_ACCESS_TOKEN") or ""
        ).strip(),
        "MERCADO_PAGO_API_BASE": os.getenv("MERCADO_PAGO_API_BASE", DEFAULT_API_BASE),
        "MERCADO_PAGO_WEBHOOK_SECRET": (
            os.getenv("MERCADO_PAGO_WEBHOOK_SECRET") or ""
        ).strip(),
        "MERCADO_PAGO_SIGNATURE_HEADER": os.getenv(
            "MERCADO_PAGO_SIGNATURE_HEADER", DEFAULT_SIGNATURE_HEADER
        ),
        "MERCADO_PAGO_TIMEOUT_SECONDS": float(
            os.getenv("MERCADO_PAGO_TIMEOUT_SECONDS", "5")
        ),
        "CHECKOUT_SUCCESS_URL": os.getenv(
            "CHECKOUT_SUCCESS_URL", DEFAULT_BACK_URLS["success"]
        ),
        "CHECKOUT_FAILURE_URL": os.getenv(
            "CHECKOUT_FAILURE_URL", DEFAULT_BACK_URLS["failure"]
        ),
        "CHECKOUT_PENDING_URL": os.getenv(
            "CHECKOUT_PENDING_URL", DEFAULT_BACK_URLS["pending"]
        ),
        "CLOUDINARY_CLOUD_NAME": (os.getenv("CLOUDINARY_CLOUD_NAME") or "").strip(),
        "CLOUDINARY_API_KEY": (os.getenv("CLOUDINARY_API_KEY") or "").strip(),
        "CLOUDINARY_API_SECRET": (os.getenv("CLOUDINARY_API_SECRET") or "").strip(),
        "CLOUDINARY_FOLDER": os.getenv("CLOUDINARY_FOLDER", "usbc"),
    }


def create_app(
    config_overrides: Optional[Dict[str, object]] = None,
    database=None,
    payment_client=None,
    image_uploader=None,
) -> Flask:
    """Create and configure the Flask application.

    ``database``, ``payment_client`` and ``image_uploader`` replace the
    MongoDB connection, Mercado Pago client and Cloudinary uploader that
    would otherwise be built from configuration.
    """
    app = Flask(__name__)

    # --- Configuration ---
    app.config.update(load_config_from_env())
    if config_overrides:
        app.config.update(config_overrides)
    app.config.setdefault("JWT_ENCODE_ISSUER", app.config["JWT_ISSUER"])
    app.config.setdefault("JWT_DECODE_ISSUER", app.config["JWT_ISSUER"])

    # --- Initialize extensions ---
    allowed_origins = [
        origin.strip()
        for origin in str(app.config["CORS_ALLOWED_ORIGINS"]).split(",")
        if origin.strip()
    ]
    CORS(app, origins=allowed_origins or "*")

    JWTManager(app)
    if database is None:
        mongo = PyMongo(app)
        database = mongo.db
    db = database

    if payment_client is None:
        payment_client = MercadoPagoClient(
            access_token=app.config["MERCADO_PAGO_ACCESS_TOKEN"],
            api_base=app.config["MERCADO_PAGO_API_BASE"],
            back_urls={
                "success": app.config["CHECKOUT_SUCCESS_URL"],
                "failure": app.config["CHECKOUT_FAILURE_URL"],
                "pending": app.config["CHECKOUT_PENDING_URL"],
            },
            timeout=app.config["MERCADO_PAGO_TIMEOUT_SECONDS"],
        )

    if image_uploader is None:
        image_uploader = CloudinaryUploader(
            cloud_name=app.config["CLOUDINARY_CLOUD_NAME"],
            api_key=app.config["CLOUDINARY_API_KEY"],
            api_secret=app.config["CLOUDINARY_API_SECRET"],
            folder=app.config["CLOUDINARY_FOLDER"],
            allowed_extensions=ALLOWED_IMAGE_EXTENSIONS,
        )

    order_store = OrderStore(db.orders)
    order_store.ensure_indexes()
    lifecycle = OrderLifecycleManager(
        order_store,
        payment_client,
        webhook_secret=app.config["MERCADO_PAGO_WEBHOOK_SECRET"],
    )
    app.extensions["order_lifecycle"] = lifecycle
    app.extensions["image_uploader"] = image_uploader

    try:
        db.users.create_index("email", unique=True)
        db.users.create_index("username", unique=True)
    except Exception as exc:
        app.logger.warning("Unable to ensure unique indexes for users: %s", exc)

    # --- Helpers ---

    def json_payload() -> Dict:
        payload = request.get_json(silent=True)
        return payload if isinstance(payload, dict) else {}

    def normalize_email(value: Optional[str]) -> str:
        return str(value or "").strip().lower()

    def issue_token(user_id) -> str:
        return create_access_token(identity=str(user_id))

    def parse_price(value) -> Optional[float]:
        if isinstance(value, bool):
            return None
        try:
            numeric = float(value)
        except (TypeError, ValueError):
            return None
        if math.isfinite(numeric):
            return numeric
        return None

    def serialize_product(product_document) -> Dict:
        return {
            "id": str(product_document.get("_id", "")),
            "name": product_document.get("name", ""),
            "price": product_document.get("price", 0),
            "description": product_document.get("description", ""),
            "imageUrl": product_document.get("imageUrl", ""),
        }

    def product_object_id(product_id: str) -> ObjectId:
        try:
            return ObjectId(product_id)
        except (InvalidId, TypeError):
            raise NotFound("Product", product_id)

    def build_product_update(payload: Dict, partial: bool) -> Dict:
        fields: Dict[str, object] = {}

        if "name" in payload or not partial:
            name = str(payload.get("name") or "").strip()
            if not name:
                raise ValidationError("Name and price are required")
            fields["name"] = name

        if "price" in payload or not partial:
            raw_price = payload.get("price")
            if raw_price is None or raw_price == "":
                raise ValidationError("Name and price are required")
            price = parse_price(raw_price)
            if price is None or price <= 0:
                raise ValidationError("must be a positive number", field="price")
            fields["price"] = price

        for key in ("description", "imageUrl"):
            if key in payload:
                fields[key] = str(payload.get(key) or "").strip()

        return fields

    # --- Error handling ---

    @app.errorhandler(StoreError)
    def handle_store_error(error: StoreError):
        if error.status_code >= 500:
            app.logger.error(f"{request.method} {request.path} failed: {error.message}")
        else:
            app.logger.warning(f"{request.method} {request.path} rejected: {error.message}")
        return jsonify({"error": error.message}), error.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        if isinstance(error, HTTPException):
            return error
        app.logger.error(
            f"Unhandled exception on {request.path}: {error}", exc_info=True
        )
        return jsonify({"error": "Internal server error"}), 500

    # --- ROUTES ---

    @app.route("/")
    def index():
        return "Store API is running"

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    # Products
    @app.route("/api/products", methods=["POST"])
    def create_product():
        fields = build_product_update(json_payload(), partial=False)
        fields.setdefault("description", "")
        fields.setdefault("imageUrl", "")
        fields["created_at"] = datetime.utcnow()

        insert_result = db.products.insert_one(fields)
        fields["_id"] = insert_result.inserted_id
        return jsonify(serialize_product(fields)), 201

    @app.route("/api/products", methods=["GET"])
    def list_products():
        product_docs = list(db.products.find().sort("created_at", -1))
        return jsonify([serialize_product(doc) for doc in product_docs])

    @app.route("/api/products/<product_id>", methods=["GET"])
    def get_product(product_id: str):
        product_document = db.products.find_one({"_id": product_object_id(product_id)})
        if not product_document:
            raise NotFound("Product", product_id)
        return jsonify(serialize_product(product_document))

    @app.route("/api/products/<product_id>", methods=["PUT"])
    def update_product(product_id: str):
        object_id = product_object_id(product_id)
        fields = build_product_update(json_payload(), partial=True)
        if not fields:
            raise ValidationError("No updatable fields were provided")

        product_document = db.products.find_one_and_update(
            {"_id": object_id},
            {"$set": {**fields, "updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not product_document:
            raise NotFound("Product", product_id)
        return jsonify(serialize_product(product_document))

    @app.route("/api/products/<product_id>", methods=["DELETE"])
    def delete_product(product_id: str):
        product_document = db.products.find_one_and_delete(
            {"_id": product_object_id(product_id)}
        )
        if not product_document:
            raise NotFound("Product", product_id)
        return jsonify(serialize_product(product_document))

    @app.route("/upload", methods=["POST"])
    def upload_product_image():
        image_url = image_uploader.upload(request.files.get("product"), "product")
        return jsonify({"success": 1, "image_url": image_url})

    # Accounts
    @app.route("/api/register", methods=["POST"])
    def register():
        payload = json_payload()
        username = str(payload.get("username") or "").strip()
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password") or "")

        if not username or not email or not password:
            raise ValidationError("Username, email, and password are required")

        if db.users.find_one({"$or": [{"email": email}, {"username": username}]}):
            raise Conflict("An account with this email or username already exists.")

        hashed_pw = hash_password(password)
        try:
            insert_result = db.users.insert_one(
                {
                    "username": username,
                    "email": email,
                    "password": hashed_pw,
                    "created_at": datetime.utcnow(),
                }
            )
        except DuplicateKeyError:
            raise Conflict("An account with this email or username already exists.")

        token = issue_token(insert_result.inserted_id)
        app.logger.info(f"Registered user {username}")
        return jsonify({"token": token}), 201

    @app.route("/api/login", methods=["POST"])
    def login():
        payload = json_payload()
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password") or "")

        if not email or not password:
            raise ValidationError("Email and password are required")

        user = db.users.find_one({"email": email})
        if not user or not check_password(password, user.get("password")):
            return jsonify({"error": "Invalid email or password"}), 401

        token = issue_token(user["_id"])
        return jsonify({"token": token})

    # Checkout and orders
    @app.route("/create-checkout-session", methods=["POST"])
    def create_checkout_session():
        payload = json_payload()
        preference_id = lifecycle.create_checkout_session(
            payload.get("items"),
            payload.get("payerEmail"),
            payload.get("shippingAddress"),
        )
        return jsonify({"id": preference_id})

    @app.route("/create-order", methods=["POST"])
    def create_order():
        payload = json_payload()
        order = lifecycle.create_order(
            payload.get("paymentId"),
            payload.get("shippingAddress"),
            payload.get("payerEmail"),
            payload.get("items"),
        )
        return jsonify({"message": "Order created successfully", "order": order}), 201

    @app.route("/order-details/<payment_id>", methods=["GET"])
    def get_order_details(payment_id: str):
        app.logger.info(f"Received request for paymentId: {payment_id}")
        return jsonify(lifecycle.get_order_details(payment_id))

    @app.route("/webhook", methods=["POST"])
    def payment_webhook():
        # The signature covers the bytes exactly as sent.
        raw_body = request.get_data(cache=True)
        signature = request.headers.get(app.config["MERCADO_PAGO_SIGNATURE_HEADER"])
        acknowledgement = lifecycle.handle_payment_notification(raw_body, signature)
        return jsonify(acknowledgement), 200

    return app
