import logging
from datetime import datetime, timezone
from typing import List, Optional

from database import SELLER_PROFILES, DocumentStore, id_filter
from errors import ValidationFailure
from identity import IdentityStore
from schemas import SellerProfile, SellerProfileWrite, SellerStatus, User

logger = logging.getLogger(__name__)


class SellerService:
    def __init__(self, store: DocumentStore, identity: IdentityStore):
        self.store = store
        self.identity = identity

    def get_profile(self, user_id) -> Optional[SellerProfile]:
        """Profile owned by an identity-store user. Not the same id as ``Product.sellerId``."""
        return SellerProfile.from_document(self.store[SELLER_PROFILES].find_one({"userId": str(user_id)}))

    def get_profile_by_id(self, profile_id: str) -> Optional[SellerProfile]:
        return SellerProfile.from_document(self.store.find_by_id(SELLER_PROFILES, profile_id))

    def create_profile(self, user: User, data: SellerProfileWrite) -> SellerProfile:
        """Open a pending seller profile and promote a buyer to seller.

        The two writes are independent. If a previous attempt stored the profile
        but never promoted the user, retrying finishes the promotion.
        """
        if user.role not in ("buyer", "seller"):
            raise ValidationFailure("Invalid role for creating seller profile")

        existing = self.get_profile(user.id)
        if existing is not None:
            if user.role == "buyer":
                self.identity.update_user(user.id, role="seller")
                logger.info("User %s promoted to seller on retry", user.id)
                return existing
            raise ValidationFailure("Seller profile already exists")

        profile = SellerProfile(
            user_id=str(user.id),
            display_name=data.display_name,
            description=data.description,
            location=data.location,
            status="pending",
            created_at=datetime.now(timezone.utc),
        )
        profile_id = self.store.create_document(SELLER_PROFILES, profile)
        if user.role == "buyer":
            self.identity.update_user(user.id, role="seller")
            logger.info("User %s promoted to seller", user.id)
        return profile.model_copy(update={"id": profile_id})

    def update_profile(self, user_id, data: SellerProfileWrite) -> Optional[SellerProfile]:
        updates = data.model_dump(by_alias=True, exclude_unset=True)
        if updates:
            self.store[SELLER_PROFILES].update_one({"userId": str(user_id)}, {"$set": updates})
        return self.get_profile(user_id)

    def get_pending_sellers(self) -> List[SellerProfile]:
        return [SellerProfile.from_document(d) for d in self.store.get_documents(SELLER_PROFILES, {"status": "pending"})]

    def update_seller_status(self, profile_id: str, status: SellerStatus) -> Optional[SellerProfile]:
        result = self.store[SELLER_PROFILES].update_one(id_filter(profile_id), {"$set": {"status": status}})
        if not result.matched_count:
            return None
        logger.info("Seller profile %s marked %s", profile_id, status)
        return self.get_profile_by_id(profile_id)
