import logging
import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import func, or_, select

from config import Settings
from database import Database
from errors import NotFoundError, ValidationError
from models import INT_MAX, Product, is_row_id
from uploads import UploadService

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

SAMPLE_PRODUCTS = [
    {"name": "Classic Cotton T-Shirt", "description": "Soft crew-neck shirt in heather grey", "price": "19.99"},
    {"name": "Denim Jacket", "description": "Stonewashed denim with brass buttons", "price": "79.50"},
    {"name": "Oxford Button-Down Shirt", "description": "Crisp white oxford shirt, slim fit", "price": "44.00"},
    {"name": "Canvas Sneakers", "description": "Low-top sneakers with vulcanized sole", "price": "54.95"},
    {"name": "Wool Beanie", "description": "Ribbed merino beanie", "price": "15.00"},
    {"name": "Leather Belt", "description": "Full-grain leather, matte buckle", "price": "32.00"},
]


def to_money(value) -> Decimal:
    return Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def product_to_dict(product: Product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "price": float(product.price),
        "image_url": product.image_url,
        "stock_quantity": product.stock_quantity,
        "created_at": product.created_at.isoformat() if product.created_at else None,
        "updated_at": product.updated_at.isoformat() if product.updated_at else None,
    }


def _positive_int(value, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if 0 < number <= INT_MAX else default


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class CatalogService:
    def __init__(self, db: Database, settings: Settings, uploads: UploadService):
        self.db = db
        self.uploads = uploads
        self.default_stock = settings.default_stock

    def list_products(self, page=None, limit=None, search: Optional[str] = None) -> dict:
        page = _positive_int(page, DEFAULT_PAGE)
        limit = min(_positive_int(limit, DEFAULT_LIMIT), MAX_LIMIT)
        offset = (page - 1) * limit

        stmt = select(Product)
        count_stmt = select(func.count()).select_from(Product)
        if search:
            pattern = _like_pattern(search)
            condition = or_(
                Product.name.ilike(pattern, escape="\\"),
                Product.description.ilike(pattern, escape="\\"),
            )
            stmt = stmt.where(condition)
            count_stmt = count_stmt.where(condition)
        stmt = stmt.order_by(Product.created_at.desc(), Product.id.desc()).limit(limit).offset(offset)

        with self.db.session() as session:
            products = session.scalars(stmt).all()
            total_count = session.scalar(count_stmt) or 0

        total_pages = math.ceil(total_count / limit)
        return {
            "products": [product_to_dict(p) for p in products],
            "pagination": {
                "currentPage": page,
                "totalPages": total_pages,
                "totalCount": total_count,
                "limit": limit,
                "hasNext": page < total_pages,
                "hasPrev": page > 1,
            },
        }

    def get_product(self, product_id: int) -> dict:
        if not is_row_id(product_id):
            raise NotFoundError("Product not found")
        with self.db.session() as session:
            product = session.get(Product, product_id)
            if product is None:
                raise NotFoundError("Product not found")
            return product_to_dict(product)

    def create_product(self, name: Optional[str], price, description: Optional[str] = None,
                       image_base64: Optional[str] = None) -> dict:
        if not name or not str(name).strip():
            raise ValidationError("Name and price are required")
        if price is None or price == "":
            raise ValidationError("Name and price are required")
        try:
            amount = to_money(str(price))
        except (InvalidOperation, ValueError):
            raise ValidationError("Price must be a positive number")
        if not amount.is_finite() or amount <= 0:
            raise ValidationError("Price must be a positive number")

        image_url = None
        if image_base64:
            image_url = self.uploads.store_image(image_base64, prefix="product")["url"]

        with self.db.transaction() as session:
            product = Product(
                name=str(name).strip(),
                description=description or "",
                price=amount,
                image_url=image_url,
                stock_quantity=self.default_stock,
            )
            session.add(product)
            session.flush()
            created = product_to_dict(product)

        logger.info("Created product %s (%s)", created["id"], created["name"])
        return created

    def seed_sample_data(self) -> int:
        with self.db.transaction() as session:
            if session.scalar(select(func.count()).select_from(Product)):
                return 0
            for item in SAMPLE_PRODUCTS:
                session.add(Product(
                    name=item["name"],
                    description=item["description"],
                    price=Decimal(item["price"]),
                    stock_quantity=self.default_stock,
                ))
        logger.info("Seeded %d sample products", len(SAMPLE_PRODUCTS))
        return len(SAMPLE_PRODUCTS)
