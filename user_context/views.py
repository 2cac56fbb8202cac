import logging

from django.conf import settings
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .crypto import decode_context
from .serializers import DecodeRequestSerializer

logger = logging.getLogger(__name__)


class DecodeUserContextView(APIView):
    """
    POST {encryptedData} -> canonical SSO context.

    Undecryptable payloads answer 200 with every field null; only a missing
    shared secret is a hard error.
    """
    authentication_classes = []

    def post(self, request):
        secret = settings.GHL_SHARED_SECRET_KEY
        if not secret:
            logger.error("GHL_SHARED_SECRET_KEY is not configured")
            return Response(
                {'error': 'Server not configured (GHL_SHARED_SECRET_KEY)'},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        serializer = DecodeRequestSerializer(data=request.data)
        raw = serializer.validated_data.get('encryptedData') if serializer.is_valid() else None

        context = decode_context(raw, secret, logger=logger)
        return Response(
            context.as_dict(),
            status=status.HTTP_200_OK,
            headers={'Cache-Control': 'no-store'},
        )
