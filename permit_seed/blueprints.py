"""
Permit Blueprints: Domain-realistic work permit material per permit type.

Each permit type defines:
  - Candidate titles, locations, scopes and equipment
  - The safety flags that kind of work raises
  - Typical hazards with raw likelihood/severity scores and controls
  - Typical precautions, some of them K3 (Permenaker) requirements

The compiler picks from these with the seeded RNG.

All data here is plain Python with no external deps.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from permit_kernel.domain_types import HazardCategory, PermitType, PrecautionCategory


@dataclass
class HazardBlueprint:
    description: str
    category: HazardCategory
    likelihood: int
    severity: int
    control_measures: str
    # Scores once the controls are in place.
    residual: Tuple[int, int] = (1, 2)


@dataclass
class PrecautionBlueprint:
    description: str
    category: PrecautionCategory
    verification_method: str = ""
    priority: int = 2
    k3_reference: str = ""


@dataclass
class PermitBlueprint:
    permit_type: PermitType
    titles: List[str]
    locations: List[str]
    scopes: List[str]
    equipment: List[str]
    safety_flags: List[str]
    hazards: List[HazardBlueprint]
    precautions: List[PrecautionBlueprint]
    materials: List[str] = field(default_factory=list)
    duration_hours: Tuple[int, int] = (4, 10)


SUPERVISORS = ["Budi Santoso", "Andi Pratama", "Yusuf Hidayat", "Hendra Gunawan"]
SAFETY_OFFICERS = ["Dewi Lestari", "Agus Wijaya", "Putri Maharani"]
CONTRACTORS = ["", "", "PT Karya Teknik Mandiri", "PT Sinar Rekayasa", "CV Mitra Las Utama"]

# Approval level → (approver name, approver id). Unlisted levels get a generic approver.
APPROVERS: Dict[str, Tuple[str, int]] = {
    "SafetyOfficer": ("Agus Wijaya", 21),
    "DepartmentHead": ("Rina Kusuma", 22),
    "HotWorkSpecialist": ("Joko Susilo", 23),
    "ConfinedSpaceSpecialist": ("Made Wirawan", 24),
    "ElectricalSupervisor": ("Fajar Nugroho", 25),
    "HeightWorkSpecialist": ("Slamet Riyadi", 26),
    "CivilEngineer": ("Lina Marlina", 27),
    "RadiationSafetyOfficer": ("Dr. Bambang Irawan", 28),
    "FireWatchOfficer": ("Eko Prasetyo", 29),
    "GasTester": ("Wahyu Saputra", 30),
    "SpecialWorkSpecialist": ("Teguh Firmansyah", 31),
    "K3Officer": ("Sri Wahyuni", 32),
    "HSEManager": ("Indra Kurniawan", 33),
}

_COMMON_PRECAUTIONS = [
    PrecautionBlueprint(
        "Toolbox talk held and attendance recorded",
        PrecautionCategory.COMMUNICATION_PROTOCOL,
        "Signed attendance sheet", 2,
    ),
    PrecautionBlueprint(
        "Full PPE: helmet, safety shoes, glasses, gloves",
        PrecautionCategory.PERSONAL_PROTECTIVE_EQUIPMENT,
        "Visual check at gate", 1, "Permenaker No. 8/2010",
    ),
    PrecautionBlueprint(
        "Work area barricaded with signage",
        PrecautionCategory.ACCESS_CONTROL,
        "Walkdown by supervisor", 3,
    ),
    PrecautionBlueprint(
        "All workers registered with BPJS Ketenagakerjaan",
        PrecautionCategory.BPJS_COMPLIANCE,
        "Membership card check", 3,
    ),
]


BLUEPRINTS: Dict[PermitType, PermitBlueprint] = {
    PermitType.GENERAL: PermitBlueprint(
        permit_type=PermitType.GENERAL,
        titles=["Office partition relocation", "Warehouse racking inspection", "Signage replacement"],
        locations=["Admin Building, Floor 2", "Central Warehouse Bay 4", "Main Gate"],
        scopes=["Dismantle and reinstall partitions; no hot work.", "Visual inspection and tagging of racking."],
        equipment=["Hand tools, trolley", "Ladder (<2 m), torque wrench"],
        safety_flags=[],
        hazards=[
            HazardBlueprint("Manual handling of panels", HazardCategory.ERGONOMIC, 3, 2,
                            "Two-person lift, trolleys for long carries"),
            HazardBlueprint("Slips on cluttered floor", HazardCategory.PHYSICAL, 2, 2,
                            "Housekeeping before and during work"),
            HazardBlueprint("Falling stored goods", HazardCategory.MECHANICAL, 2, 4,
                            "Unload upper levels before inspection", (1, 3)),
        ],
        precautions=list(_COMMON_PRECAUTIONS),
        duration_hours=(2, 8),
    ),
    PermitType.COLD_WORK: PermitBlueprint(
        permit_type=PermitType.COLD_WORK,
        titles=["Pump seal replacement P-204", "Valve overhaul on cooling header"],
        locations=["Utility Area, Pump House 2", "Cooling Tower CT-1"],
        scopes=["Isolate, drain, replace mechanical seal, leak test."],
        equipment=["Spanner set, chain block", "Portable pump"],
        safety_flags=[],
        hazards=[
            HazardBlueprint("Residual pressure in line", HazardCategory.MECHANICAL, 3, 4,
                            "Depressurise and verify zero energy"),
            HazardBlueprint("Contact with treated water chemicals", HazardCategory.CHEMICAL, 2, 3,
                            "Chemical gloves and goggles"),
        ],
        precautions=list(_COMMON_PRECAUTIONS) + [
            PrecautionBlueprint("Line isolated and tagged", PrecautionCategory.ISOLATION,
                                "Isolation certificate", 1),
        ],
        materials=["Mechanical seal kit, gaskets"],
    ),
    PermitType.HOT_WORK: PermitBlueprint(
        permit_type=PermitType.HOT_WORK,
        titles=["Welding repair on tank T-101 nozzle", "Pipe rack cutting and re-welding"],
        locations=["Tank Farm, T-101", "Pipe Rack PR-3"],
        scopes=["Grind out crack, weld repair, NDT, repaint."],
        equipment=["Welding machine 400A, grinder", "Oxy-acetylene set"],
        safety_flags=["hot_work", "fire_watch"],
        hazards=[
            HazardBlueprint("Ignition of flammable vapours", HazardCategory.FIRE, 3, 5,
                            "Gas test before and every 2 h; remove combustibles", (1, 4)),
            HazardBlueprint("Welding fumes", HazardCategory.CHEMICAL, 4, 3,
                            "Local exhaust ventilation, respirators"),
            HazardBlueprint("Arc eye and burns", HazardCategory.PHYSICAL, 3, 3,
                            "Welding screens and full welding PPE"),
        ],
        precautions=list(_COMMON_PRECAUTIONS) + [
            PrecautionBlueprint("Fire watch posted with 2 extinguishers", PrecautionCategory.FIRE_SAFETY,
                                "Fire watch log", 1, "Permenaker No. 4/1980"),
            PrecautionBlueprint("Combustibles cleared within 11 m", PrecautionCategory.FIRE_SAFETY,
                                "Area walkdown", 1),
        ],
        materials=["E7018 electrodes, primer"],
        duration_hours=(6, 12),
    ),
    PermitType.CONFINED_SPACE: PermitBlueprint(
        permit_type=PermitType.CONFINED_SPACE,
        titles=["Vessel V-301 internal inspection", "Sump cleaning at effluent pit"],
        locations=["Process Area, V-301", "Effluent Treatment Pit 2"],
        scopes=["Isolate, vent, gas test, enter, inspect, exit and box up."],
        equipment=["Gas detector, tripod and winch", "Blower, SCBA sets"],
        safety_flags=["confined_space_entry", "gas_monitoring"],
        hazards=[
            HazardBlueprint("Oxygen deficient atmosphere", HazardCategory.CHEMICAL, 3, 5,
                            "Continuous forced ventilation and gas monitoring", (1, 5)),
            HazardBlueprint("Toxic H2S release from sludge", HazardCategory.CHEMICAL, 3, 5,
                            "Personal H2S monitors, SCBA on standby", (1, 4)),
            HazardBlueprint("Engulfment during sludge removal", HazardCategory.PHYSICAL, 2, 5,
                            "Lifeline with standby attendant", (1, 4)),
        ],
        precautions=list(_COMMON_PRECAUTIONS) + [
            PrecautionBlueprint("Atmosphere tested: O2, LEL, H2S, CO", PrecautionCategory.GAS_MONITORING,
                                "Gas test record", 1, "Permenaker No. 11/2005"),
            PrecautionBlueprint("Rescue plan briefed, attendant at manway", PrecautionCategory.EMERGENCY_PROCEDURES,
                                "Rescue drill record", 1),
        ],
        duration_hours=(4, 8),
    ),
    PermitType.ELECTRICAL_WORK: PermitBlueprint(
        permit_type=PermitType.ELECTRICAL_WORK,
        titles=["MCC-4 breaker replacement", "Transformer TR-2 oil sampling"],
        locations=["Substation SS-1", "Electrical Room ER-2"],
        scopes=["LOTO, prove dead, replace breaker, test, re-energise."],
        equipment=["Insulated tools, voltage tester", "Arc flash suit"],
        safety_flags=["electrical_isolation"],
        hazards=[
            HazardBlueprint("Electric shock from stored energy", HazardCategory.ELECTRICAL, 3, 5,
                            "Lockout/tagout, prove dead, earth", (1, 4)),
            HazardBlueprint("Arc flash during racking", HazardCategory.ELECTRICAL, 2, 5,
                            "Remote racking, arc-rated PPE", (1, 4)),
        ],
        precautions=list(_COMMON_PRECAUTIONS) + [
            PrecautionBlueprint("LOTO applied and verified by second person", PrecautionCategory.ISOLATION,
                                "LOTO register", 1, "PUIL 2011"),
        ],
        duration_hours=(3, 8),
    ),
    PermitType.WORKING_AT_HEIGHT: PermitBlueprint(
        permit_type=PermitType.WORKING_AT_HEIGHT,
        titles=["Roof sheet replacement, warehouse", "Flare stack lighting maintenance"],
        locations=["Central Warehouse Roof", "Flare Stack FS-1"],
        scopes=["Erect scaffold, replace sheets, dismantle scaffold."],
        equipment=["Scaffold, full-body harness", "Mobile elevating work platform"],
        safety_flags=["height_work"],
        hazards=[
            HazardBlueprint("Fall from height", HazardCategory.PHYSICAL, 3, 5,
                            "100% tie-off, inspected scaffold", (1, 4)),
            HazardBlueprint("Dropped objects", HazardCategory.MECHANICAL, 3, 4,
                            "Tool lanyards, exclusion zone below"),
        ],
        precautions=list(_COMMON_PRECAUTIONS) + [
            PrecautionBlueprint("Scaffold tagged green by competent person", PrecautionCategory.EQUIPMENT_SAFETY,
                                "Scaff-tag", 1, "Permenaker No. 9/2016"),
        ],
    ),
    PermitType.EXCAVATION: PermitBlueprint(
        permit_type=PermitType.EXCAVATION,
        titles=["Trench for new firewater line", "Foundation pit for pump skid"],
        locations=["North Road crossing", "Utility Area, Skid S-7"],
        scopes=["Locate services, excavate to 1.8 m, shore, lay pipe, backfill."],
        equipment=["Excavator, cable locator", "Trench shoring boxes"],
        safety_flags=["excavation"],
        hazards=[
            HazardBlueprint("Trench wall collapse", HazardCategory.PHYSICAL, 3, 5,
                            "Shoring, batter slopes, spoil set back 1 m", (1, 4)),
            HazardBlueprint("Strike on buried cable", HazardCategory.ELECTRICAL, 2, 5,
                            "Cable locate and hand digging near services", (1, 4)),
        ],
        precautions=list(_COMMON_PRECAUTIONS) + [
            PrecautionBlueprint("Traffic diverted with flagmen", PrecautionCategory.TRAFFIC_CONTROL,
                                "Traffic plan sign-off", 2),
        ],
        duration_hours=(8, 12),
    ),
    PermitType.SPECIAL: PermitBlueprint(
        permit_type=PermitType.SPECIAL,
        titles=["Radiography of weld joints on line 12", "Nuclear level gauge replacement"],
        locations=["Pipe Rack PR-5", "Process Area, Column C-2"],
        scopes=["Set exclusion zone, expose films, survey, release area."],
        equipment=["Ir-192 source container, survey meter"],
        safety_flags=["radiation_work"],
        hazards=[
            HazardBlueprint("Ionising radiation exposure", HazardCategory.RADIOLOGICAL, 2, 5,
                            "Barricaded controlled zone, dosimeters", (1, 4)),
            HazardBlueprint("Lost or stuck source", HazardCategory.RADIOLOGICAL, 2, 5,
                            "Source retrieval kit, licensed radiographer", (1, 4)),
        ],
        precautions=list(_COMMON_PRECAUTIONS) + [
            PrecautionBlueprint("BAPETEN licence and dosimetry on site", PrecautionCategory.K3_COMPLIANCE,
                                "Licence check", 1, "PP No. 45/2023"),
        ],
        duration_hours=(4, 8),
    ),
}


def get_blueprint(permit_type: PermitType) -> PermitBlueprint:
    return BLUEPRINTS[PermitType(permit_type)]
