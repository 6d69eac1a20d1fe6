"""User model for the marketplace.

Profiles, registration and token issuance live outside this service; the
model only carries what checkout needs to reference buyers and sellers.
"""

from common.choices import UserRole
from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Marketplace account with a unique email and a buyer/seller role."""

    ROLE_CONSUMER = UserRole.CONSUMER
    ROLE_PRODUCER = UserRole.PRODUCER
    ROLE_ADMIN = UserRole.ADMIN

    email = models.EmailField(unique=True)
    role = models.CharField(max_length=16, choices=UserRole.choices, default=ROLE_CONSUMER, db_index=True)

    def save(self, *args, **kwargs):
        # Stored lowercase so uniqueness checks are reliable
        if self.email:
            self.email = self.email.strip().lower()
        super().save(*args, **kwargs)

    @property
    def is_producer(self) -> bool:
        return self.role == self.ROLE_PRODUCER
