from django.urls import path

from gasless.views import (
    CreditView,
    PaymentHistoryView,
    PaymentPayloadCheckView,
    QuoteView,
    RecordPaymentView,
    SponsorView,
)

app_name = 'gasless'

urlpatterns = [
    path('quote', QuoteView.as_view(), name='quote'),
    path('x402/verify', PaymentPayloadCheckView.as_view(), name='x402-verify'),
    path('payments', RecordPaymentView.as_view(), name='record-payment'),
    path('payments/<str:user_key>', PaymentHistoryView.as_view(), name='payment-history'),
    path('credit/<str:user_key>', CreditView.as_view(), name='credit'),
    path('sponsor', SponsorView.as_view(), name='sponsor'),
]
