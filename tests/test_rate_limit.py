from app.services.rate_limit import FixedWindowRateLimiter


def test_allows_up_to_max_then_blocks(fake_redis):
    limiter = FixedWindowRateLimiter(fake_redis)

    results = [limiter.check_and_increment("otp:a@example.com", 60, 5) for _ in range(6)]

    assert results == [True, True, True, True, True, False]


def test_window_resets_after_expiry(fake_redis):
    limiter = FixedWindowRateLimiter(fake_redis)
    for _ in range(6):
        limiter.check_and_increment("otp:a@example.com", 60, 5)

    fake_redis.advance(61)

    assert limiter.check_and_increment("otp:a@example.com", 60, 5) is True


def test_expiry_is_set_only_by_first_increment(fake_redis):
    limiter = FixedWindowRateLimiter(fake_redis)
    limiter.check_and_increment("bulk:tpl-1", 60, 10)
    fake_redis.advance(30)
    limiter.check_and_increment("bulk:tpl-1", 60, 10)

    assert limiter.seconds_until_reset("bulk:tpl-1") == 30


def test_keys_are_independent(fake_redis):
    limiter = FixedWindowRateLimiter(fake_redis)
    for _ in range(5):
        limiter.check_and_increment("otp:a@example.com", 60, 5)

    assert limiter.check_and_increment("otp:b@example.com", 60, 5) is True
    assert limiter.check_and_increment("otp:a@example.com", 60, 5) is False


def test_reset_clears_counter(fake_redis):
    limiter = FixedWindowRateLimiter(fake_redis)
    for _ in range(6):
        limiter.check_and_increment("otp:a@example.com", 60, 5)

    limiter.reset("otp:a@example.com")

    assert limiter.check_and_increment("otp:a@example.com", 60, 5) is True
    assert limiter.seconds_until_reset("missing") == 0
