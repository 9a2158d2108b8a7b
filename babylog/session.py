"""Owner session passed explicitly to client-side components."""

from dataclasses import dataclass, field

from babylog.protocols import ConnectivityProbe, StaticConnectivity
from babylog.validation import validate_owner_id


@dataclass
class OwnerSession:
    """The signed-in owner and the client's view of connectivity."""

    owner_id: int
    connectivity: ConnectivityProbe = field(default_factory=StaticConnectivity)

    def __post_init__(self):
        self.owner_id = validate_owner_id(self.owner_id)

    @property
    def online(self) -> bool:
        return self.connectivity.is_online()
