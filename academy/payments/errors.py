"""Erreurs des adaptateurs de paiement (Stripe, MTN MoMo)."""

class PaymentProviderError(Exception):
    """
    Le fournisseur a refusé ou n'a pas pu traiter la demande.
    - provider: 'stripe' | 'mtn_momo'
    - message: texte renvoyé au client (HTTP 400)
    """
    def __init__(self, provider: str, message: str):
        super().__init__(message)
        self.provider = provider
        self.message = message
