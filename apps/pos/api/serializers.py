from rest_framework import serializers

from apps.pos.checkout import CASH, PAYMENT_METHODS, PaymentSelection
from apps.pos.discounts import DISCOUNT_TYPES


class SelectStoreSerializer(serializers.Serializer):
    store_id = serializers.CharField(max_length=100)
    category_id = serializers.CharField(max_length=100, required=False, default='all')


class AddItemSerializer(serializers.Serializer):
    product_id = serializers.CharField(max_length=100)


class UpdateQuantitySerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=0)


class DiscountSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=DISCOUNT_TYPES)
    value = serializers.DecimalField(max_digits=12, decimal_places=2)


class TenderSerializer(serializers.Serializer):
    tendered = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)


class CheckoutSerializer(serializers.Serializer):
    payment_method = serializers.ChoiceField(choices=PAYMENT_METHODS)
    amount_tendered = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=0, required=False, allow_null=True
    )
    customer_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    customer_phone = serializers.CharField(max_length=50, required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    recapture = serializers.BooleanField(required=False, default=False)

    def validate(self, attrs):
        if attrs['payment_method'] == CASH and attrs.get('amount_tendered') is None:
            raise serializers.ValidationError({'amount_tendered': 'Cash received is required for cash payments.'})
        return attrs

    def to_selection(self):
        data = self.validated_data
        return PaymentSelection(
            method=data['payment_method'],
            tendered_amount=data.get('amount_tendered') if data['payment_method'] == CASH else None,
            customer={
                'name': data.get('customer_name', ''),
                'phone': data.get('customer_phone', ''),
                'notes': data.get('notes', ''),
            },
        )


class RetrySerializer(serializers.Serializer):
    recapture = serializers.BooleanField(required=False, default=False)
