from rest_framework import serializers


class DecodeRequestSerializer(serializers.Serializer):
    # Either a CryptoJS string or an {iv, cipherText, tag} object
    encryptedData = serializers.JSONField(required=False, allow_null=True)
