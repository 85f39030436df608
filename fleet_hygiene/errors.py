class FleetHygieneException(Exception):
    pass


class CollaboratorUnavailable(FleetHygieneException):
    pass


class RegistryUnavailable(CollaboratorUnavailable):
    pass


class MetricsUnavailable(CollaboratorUnavailable):
    pass


class ProviderUnavailable(CollaboratorUnavailable):
    pass


# re-verification before a destroy found the host no longer qualifies
class StaleSnapshot(FleetHygieneException):
    pass


class ConfigInvalid(FleetHygieneException):
    pass
