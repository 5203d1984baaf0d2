# betaflow/models/db.py
from tortoise import fields
from tortoise.models import Model


class RawMaterial(Model):
    id = fields.UUIDField(pk=True)
    name = fields.CharField(max_length=255)
    sku = fields.CharField(max_length=100, unique=True)
    unit = fields.CharField(max_length=50)
    current_stock = fields.FloatField(default=0)
    minimum_stock = fields.FloatField(default=0)
    unit_cost = fields.FloatField(null=True)
    location = fields.CharField(max_length=255, null=True)
    supplier_id = fields.UUIDField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "raw_materials"


class Product(Model):
    id = fields.UUIDField(pk=True)
    name = fields.CharField(max_length=255)
    sku = fields.CharField(max_length=100, unique=True)
    category = fields.CharField(max_length=100, null=True)
    description = fields.TextField(null=True)
    unit_price = fields.FloatField(null=True)
    production_time_minutes = fields.IntField(null=True)
    raw_materials = fields.JSONField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "products"


class Profile(Model):
    id = fields.UUIDField(pk=True)
    full_name = fields.CharField(max_length=255)
    email = fields.CharField(max_length=255, unique=True)
    role = fields.CharField(max_length=32, default="machine_operator")
    department = fields.CharField(max_length=100, null=True)
    phone = fields.CharField(max_length=30, null=True)
    shift = fields.CharField(max_length=30, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "profiles"


class Machine(Model):
    id = fields.UUIDField(pk=True)
    name = fields.CharField(max_length=255)
    type = fields.CharField(max_length=100)
    location = fields.CharField(max_length=255, null=True)
    status = fields.CharField(max_length=20, default="idle")
    specifications = fields.JSONField(null=True)
    last_maintenance = fields.DatetimeField(null=True)
    next_maintenance = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "machines"


class ImportJob(Model):
    id = fields.IntField(pk=True)
    user_id = fields.CharField(max_length=64)  # subject of the identity provider's token
    kind = fields.CharField(max_length=32)
    status = fields.CharField(max_length=20, default="queued")  # queued → parsing … importing → completed|partial_success|failed|rejected; cancelling → cancelled
    meta = fields.JSONField(default=dict)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "import_jobs"
