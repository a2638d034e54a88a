import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("signature", models.CharField(max_length=128, unique=True)),
                ("amount", models.BigIntegerField(default=0)),
                ("amount_major", models.DecimalField(decimal_places=12, default=0, max_digits=30)),
                ("credit_remaining", models.BigIntegerField(default=0)),
                ("credit_used", models.BigIntegerField(default=0)),
                ("destination_token_account", models.CharField(max_length=128)),
                ("destination_wallet", models.CharField(max_length=128)),
                ("source_address", models.CharField(blank=True, max_length=128, null=True)),
                ("network", models.CharField(max_length=32)),
                ("token_mint", models.CharField(max_length=128)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("verified", "Verified"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("evidence_method", models.CharField(blank=True, default="", max_length=64)),
                ("verification_evidence", models.JSONField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, default="")),
                ("explorer_url", models.CharField(blank=True, default="", max_length=255)),
                ("verified_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="gasless_payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["user", "status", "created_at"], name="payment_user_status_created"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=(
                            (
                                models.Q(("status", "verified"))
                                & models.Q(("credit_remaining", models.F("amount") - models.F("credit_used")))
                            )
                            | (~models.Q(("status", "verified")) & models.Q(("credit_remaining", 0)))
                        ),
                        name="payment_credit_conserved",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("credit_remaining__gte", 0), ("credit_used__gte", 0)),
                        name="payment_credit_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="SponsoredTransaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("category", models.CharField(default="USER_TRANSACTION", max_length=64)),
                ("signature", models.CharField(blank=True, max_length=128, null=True, unique=True)),
                ("fee_paid", models.BigIntegerField(blank=True, null=True)),
                ("credit_used", models.BigIntegerField(default=0)),
                ("credit_allocations", models.JSONField(blank=True, default=list)),
                ("credit_refunded", models.BooleanField(default=False)),
                ("serialized_transaction", models.TextField(blank=True, default="")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("submitted", "Submitted"),
                            ("confirmed", "Confirmed"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("error_message", models.TextField(blank=True, default="")),
                ("network", models.CharField(max_length=32)),
                ("explorer_url", models.CharField(blank=True, default="", max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "payment",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="sponsored_transactions",
                        to="gasless.payment",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="sponsored_transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="UserWallet",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("address", models.CharField(max_length=128)),
                ("network", models.CharField(default="solana", max_length=32)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "user",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="gasless_wallet",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
        ),
    ]
