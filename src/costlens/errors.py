class CostlensError(Exception):
    """
    base class for every error raised by costlens.
    """


class InvalidConfiguration(CostlensError, ValueError):
    """
    raised before any scan begins when an analysis is configured
    with values it cannot honour.
    """


class InvalidBucketConfiguration(InvalidConfiguration):
    """
    bucket boundaries that are not exhaustive, overlap or leave a gap.
    """


class UnknownDimension(InvalidConfiguration):
    pass


class InvalidRecord(CostlensError, ValueError):
    """
    a billing record that violates its own invariants
    (negative cost, inverted usage interval, ...).
    """


class SourceExhaustionError(CostlensError):
    """
    the record source failed mid-scan. Whatever was aggregated
    before the failure is discarded.
    """


class AnalysisCancelled(CostlensError):
    """
    the cancel signal was set while scanning. Carries how many
    records had been read when the scan stopped.
    """

    def __init__(self, scanned: "int") -> "None":
        super().__init__(f"analysis cancelled after {scanned} records")
        self.scanned = scanned
