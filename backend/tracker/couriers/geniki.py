import re

from tracker.couriers.base import NumericCourierProvider


class GenikiProvider(NumericCourierProvider):
    id = "geniki"
    label = "Geniki Taxidromiki"
    format_label = "Geniki"
    shape = re.compile(r"\d{8,12}")
    blocked = re.compile(r"0{8,}|1{8,}|12345678")
    block_in_shape = True
