import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="AllocationRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("product_id", models.CharField(db_index=True, max_length=64)),
                ("order_ref", models.CharField(max_length=64)),
                ("item_ref", models.CharField(max_length=64)),
                ("order_name", models.CharField(blank=True, default="", max_length=64)),
                ("vendor_name", models.CharField(blank=True, default="", max_length=255)),
                ("position", models.PositiveIntegerField(blank=True, null=True)),
                ("total_capacity", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "state",
                    models.CharField(
                        choices=[("ACTIVE", "Active"), ("RETIRED", "Retired")],
                        default="ACTIVE",
                        max_length=16,
                    ),
                ),
                ("retired_reason", models.CharField(blank=True, default="", max_length=64)),
                ("certificate_token", models.UUIDField(blank=True, editable=False, null=True)),
                ("certificate_url", models.CharField(blank=True, default="", max_length=500)),
                ("certificate_generated_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["product_id", "created_at", "id"],
            },
        ),
        migrations.CreateModel(
            name="EditionSequence",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("product_id", models.CharField(max_length=64, unique=True)),
                ("active_count", models.PositiveIntegerField(default=0)),
                ("last_renumbered_at", models.DateTimeField(blank=True, null=True)),
            ],
        ),
        migrations.AddIndex(
            model_name="allocationrecord",
            index=models.Index(
                fields=["product_id", "state", "created_at"],
                name="editions_alloc_state_idx",
            ),
        ),
        migrations.AddConstraint(
            model_name="allocationrecord",
            constraint=models.UniqueConstraint(
                fields=("product_id", "order_ref", "item_ref"),
                name="editions_allocation_idempotency_key",
            ),
        ),
        migrations.AddConstraint(
            model_name="allocationrecord",
            constraint=models.UniqueConstraint(
                condition=models.Q(("state", "ACTIVE")),
                fields=("product_id", "position"),
                name="editions_allocation_active_position",
            ),
        ),
    ]
