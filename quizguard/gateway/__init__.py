"""Quiz Generation Gateway.

Guards every call to an external AI backend with:
  - Circuit Breaker (per-service failure isolation)
  - Per-session Rate Limiter (quotas, cooldown, concurrency)
  - Request Signer (HMAC signatures, replay window)
  - Response Validator (schema, content safety, quiz grammar)
  - Providers (OpenAI, Google Gemini, GWDG)
"""
