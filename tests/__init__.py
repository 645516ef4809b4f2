"""
Subscription Engine Test Suite

Tests for:
- Market resolution and price formatting
- Payment provider registry, Stripe and RevenueCat adapters
- Subscription orchestrator (customers, checkout, cancellation)
- Feature gate, recording quota, WhatsApp trial
- HTTP API endpoints

Run tests with:
    pytest tests/ -v

Run fast tests only:
    pytest tests/ -v -m "not slow"
"""
