"""
Vendor product API routes.

Endpoints:
- DELETE /vendor/products/{product_id} - Delete own product (2FA protected)
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from echoshop.database import get_db
from echoshop.models import User, UserRole, VendorProduct, TwoFactorSession, CriticalActionType, AuditAction
from echoshop.dependencies.auth import require_vendor
from echoshop.dependencies.two_factor import require_2fa
from echoshop.error_handlers import NotFoundError, AuthorizationError
from echoshop.services.audit_service import AuditService
from echoshop.utils.ip_utils import get_client_ip
from echoshop.schemas.marketplace_schemas import ProductDeleteResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/vendor/products", tags=["Vendor Products"])


@router.delete(
    "/{product_id}",
    response_model=ProductDeleteResponse,
    status_code=status.HTTP_200_OK,
    summary="Delete a product"
)
async def delete_product(
    product_id: UUID,
    request: Request,
    current_user: User = Depends(require_vendor()),
    verified: Optional[TwoFactorSession] = Depends(require_2fa(CriticalActionType.DELETE_PRODUCT)),
    db: Session = Depends(get_db)
):
    """
    Delete a product listing.

    **Requires:** a verified `delete_product` 2FA session in the
    `x-2fa-session-token` header.

    **Errors:**
    - 403: 2FA required (`requires2FA: true`) or not the product's vendor
    - 404: Product not found
    """
    product = db.query(VendorProduct).filter(VendorProduct.id == product_id).first()
    if not product:
        raise NotFoundError("Product not found", resource_type="product")

    if product.vendor_id != current_user.id and UserRole.parse(current_user.role) not in (UserRole.ADMIN, UserRole.OWNER):
        raise AuthorizationError("You can only delete your own products")

    name = product.name
    db.delete(product)
    db.commit()

    AuditService(db).log_guarded_action(
        AuditAction.PRODUCT_DELETE,
        actor=current_user,
        target_type="product",
        target_id=str(product_id),
        changes={"name": name, "twoFactorSessionId": str(verified.id) if verified else None},
        ip_address=get_client_ip(request),
    )

    logger.info(f"Product {product_id} deleted by {current_user.id}")

    return ProductDeleteResponse(
        success=True,
        product_id=product_id,
        message="Product deleted"
    )
