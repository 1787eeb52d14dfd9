"""
自定義異常類別

所有業務規則違反都以這些異常拋出，API 層集中對應成 HTTP 回應。分成四類：

- ValidationFailed：寫入內容不合法，不會寫進資料庫
- Conflict：與既有資料衝突
- NotFound：目標 id 不存在
- InvalidStateTransition：不允許的生命週期轉換
"""


class EventCoreException(Exception):
    """所有業務異常的基類"""
    pass


class ValidationFailed(EventCoreException):
    pass


class Conflict(EventCoreException):
    pass


class NotFound(EventCoreException):
    entity = "Entity"

    def __init__(self, entity_id):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} {entity_id} not found")


class InvalidStateTransition(EventCoreException):
    pass


# ============ 找不到 ============

class EventNotFound(NotFound):
    entity = "Event"


class RoundNotFound(NotFound):
    entity = "Round"


class RegistrationNotFound(NotFound):
    entity = "Registration"


class ScoreNotFound(NotFound):
    entity = "Score"


class AccommodationNotFound(NotFound):
    entity = "Accommodation"


class AccommodationRequestNotFound(NotFound):
    entity = "Accommodation request"


class PaymentNotFound(NotFound):
    entity = "Payment"


class ContractNotFound(NotFound):
    entity = "Sponsorship contract"


class AlertNotFound(NotFound):
    entity = "Alert"


class InventoryItemNotFound(NotFound):
    entity = "Inventory item"


# ============ 資料驗證 ============

class InvalidPaymentTarget(ValidationFailed):
    """付款必須對應報名或贊助合約其中之一"""
    pass


class InvalidDateRange(ValidationFailed):
    pass


class InvalidCapacity(ValidationFailed):
    pass


class RegistrationClosed(ValidationFailed):
    """活動已取消、已結束或已過報名截止時間"""
    pass


class RoundEventMismatch(ValidationFailed):
    """回合與報名屬於不同活動"""
    pass


# ============ 衝突 ============

class DuplicateRegistration(Conflict):
    pass


class DuplicateTransaction(Conflict):
    pass


class DuplicateEventSlot(Conflict):
    pass


class RequestAlreadyProcessed(Conflict):
    pass


class DuplicateAccommodation(Conflict):
    pass


# ============ 背景排程 ============

class JobTimeout(EventCoreException):
    """排程執行超過時限，已 rollback"""
    pass
