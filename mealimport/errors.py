class MealImportError(RuntimeError):
    pass


class AiConfigError(MealImportError):
    pass


class AiProviderError(MealImportError):
    pass


class AiTimeoutError(MealImportError):
    pass


class AiValidationError(MealImportError):
    pass


class UnsafeUrlError(AiValidationError):
    pass


class SubscriptionRequiredError(MealImportError):
    code = "subscription_required"
    status = 402

    def __init__(self, feature: str):
        super().__init__("Subscription required")
        self.feature = feature


class AiUsageLimitError(MealImportError):
    code = "usage_limit_reached"
    status = 429

    def __init__(self, feature: str, limit: int, used: int, period):
        super().__init__("AI usage limit reached")
        self.feature = feature
        self.limit = limit
        self.used = used
        self.period = period
