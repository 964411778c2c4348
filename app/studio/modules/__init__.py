"""
Lifecycle modules: authors, OTP challenges, registration, verification
(KYC + payout methods), content review and notifications.
"""
