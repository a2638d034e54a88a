from django.contrib import admin

from gasless.models import Payment, SponsoredTransaction, UserWallet


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("signature", "user", "status", "amount", "credit_remaining", "credit_used", "created_at")
    list_filter = ("status", "network")
    search_fields = ("signature", "source_address", "destination_token_account", "user__email")
    # Credit is only moved by the ledger.
    readonly_fields = ("amount", "amount_major", "credit_remaining", "credit_used", "verified_at")


@admin.register(SponsoredTransaction)
class SponsoredTransactionAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "category", "status", "signature", "credit_used", "credit_refunded", "created_at")
    list_filter = ("status", "category", "credit_refunded")
    search_fields = ("signature", "submitted_signature", "user__email")
    readonly_fields = ("credit_used", "credit_allocations", "credit_refunded", "fee_paid", "submitted_signature")


@admin.register(UserWallet)
class UserWalletAdmin(admin.ModelAdmin):
    list_display = ("user", "address", "network", "created_at")
    search_fields = ("address", "user__email")
