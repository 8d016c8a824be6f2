"""
Backend Trading Academy (FastAPI + Supabase).
Vente de formations, plans de signaux et bots; paiement Stripe ou MTN Mobile Money,
puis attribution des droits d'accès après confirmation du fournisseur.
"""
