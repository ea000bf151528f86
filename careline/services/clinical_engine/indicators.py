"""
Built-in indicator catalog: QOF 2025/26 plus NICE, KPI and safety checks
used by the practice's proactive care lists.

Entries are plain dicts so the same shape can be shipped as JSON
(see config.QOF_CATALOG_PATH) and validated by catalog.load_catalog().

Vocabulary terms are matched as case-insensitive substrings, so short
abbreviations that occur inside other words ("TIA" in "dementia", "ACE" in
"paracetamol", "statin" in "nystatin") are avoided in favour of full terms.
"""
from typing import Any, Dict, List, Optional

CATALOG_VERSION = "qof-2025-26"

# ==================== Vocabulary ====================

HYPERTENSION = ["Hypertension", "High blood pressure"]
DIABETES = ["Diabetes", "T2DM", "T1DM"]
CHD = ["CHD", "Coronary", "Angina", "Myocardial infarction", "Ischaemic heart"]
STROKE_TIA = ["Stroke", "Transient ischaemic", "Transient ischemic", "Cerebrovascular"]
PAD = ["Peripheral arterial", "Peripheral vascular"]
CKD = ["CKD", "Chronic kidney", "Renal impairment"]
CVD = CHD + STROKE_TIA + PAD + ["Cardiovascular"]
ATRIAL_FIBRILLATION = ["Atrial fibrillation", "Atrial flutter"]
HEART_FAILURE = ["Heart failure", "LVSD", "Left ventricular", "CCF"]
ASTHMA = ["Asthma"]
COPD = ["COPD", "Chronic obstructive"]
DEMENTIA = ["Dementia", "Alzheimer", "Lewy body"]
SERIOUS_MENTAL_ILLNESS = ["Schizophrenia", "Bipolar", "Psychosis", "Psychotic"]

STATINS = ["Atorvastatin", "Simvastatin", "Rosuvastatin", "Pravastatin", "Fluvastatin"]
ANTICOAGULANTS = ["Warfarin", "Apixaban", "Rivaroxaban", "Edoxaban", "Dabigatran"]
ACEI_ARB = [
    "ACE inhibitor", "ACE-I", "Angiotensin",
    "Ramipril", "Lisinopril", "Enalapril", "Perindopril",
    "sartan", "Entresto", "Sacubitril",
]
BETA_BLOCKERS = ["Beta-blocker", "Beta blocker", "Bisoprolol", "Carvedilol", "Nebivolol", "Metoprolol"]
HIGH_RISK_MEDICINES = ["Methotrexate", "Azathioprine", "Lithium"]

MODERATE_OR_SEVERE = ["moderate", "severe"]

BP_METRICS = ["blood_pressure_systolic", "blood_pressure_diastolic"]


def _bp_control(
    indicator_id: str,
    code: str,
    elderly_code: Optional[str],
    name: str,
    category: str,
    applicability: Dict[str, Any],
    target_percent: int,
    description: str
) -> Dict[str, Any]:
    """Blood pressure control: <=140/90, relaxed to <=150/90 from age 80 where a code exists."""
    variants: List[Dict[str, Any]] = []
    if elderly_code:
        variants.append({
            "when": {"age_gte": 80},
            "code": elderly_code,
            "limits": {"blood_pressure_systolic": 150, "blood_pressure_diastolic": 90},
        })
    variants.append({"limits": {"blood_pressure_systolic": 140, "blood_pressure_diastolic": 90}})

    return {
        "id": indicator_id,
        "code": code,
        "name": name,
        "description": description,
        "category": category,
        "framework": "QOF",
        "target_percent": target_percent,
        "applicability": applicability,
        "rule": {
            "kind": "threshold",
            "source": "observation",
            "metrics": BP_METRICS,
            "variants": variants,
            "on_missing": {
                "priority": "high",
                "due_within": "14 days",
                "title": "Blood Pressure Check Required",
                "reason": "No BP reading on record",
                "action_required": "Record BP and review management",
            },
            "on_breach": {
                "priority": "high",
                "due_within": "7 days",
                "title": "Blood Pressure Not Controlled",
                "reason": (
                    "BP {blood_pressure_systolic}/{blood_pressure_diastolic} exceeds target "
                    "<={target_blood_pressure_systolic}/{target_blood_pressure_diastolic}"
                ),
                "action_required": "Medication review and lifestyle counselling",
            },
            "escalations": [
                {
                    "above": {
                        "blood_pressure_systolic": {"op": "gte", "value": 180},
                        "blood_pressure_diastolic": {"op": "gte", "value": 110},
                    },
                    "priority": "critical",
                    "due_within": "24 hours",
                    "action_required": "URGENT: Medication review and consider same-day assessment",
                },
            ],
        },
    }


def _annual_review(
    indicator_id: str,
    code: str,
    name: str,
    category: str,
    conditions: List[str],
    action_required: str,
    target_percent: int
) -> Dict[str, Any]:
    return {
        "id": indicator_id,
        "code": code,
        "name": name,
        "description": "Patients on the register reviewed in the preceding 12 months",
        "category": category,
        "framework": "QOF",
        "target_percent": target_percent,
        "applicability": {"condition": conditions},
        "rule": {
            "kind": "review",
            "metrics": ["last_review_date"],
            "max_age_months": 12,
            "on_missing": {
                "priority": "medium",
                "due_within": "1 month",
                "reason": "No review on record",
                "action_required": action_required,
            },
            "on_breach": {
                "priority": "medium",
                "due_within": "1 month",
                "reason": "Last review {months} months ago",
                "action_required": action_required,
            },
        },
    }


def _statin(indicator_id, code, name, applicability, priority, due_within, reason, action_required, target_percent):
    return {
        "id": indicator_id,
        "code": code,
        "name": name,
        "description": "Patients at cardiovascular risk currently treated with a statin",
        "category": "cardiovascular" if code.startswith("CHOL") else "diabetes",
        "framework": "QOF",
        "target_percent": target_percent,
        "applicability": applicability,
        "rule": {
            "kind": "treatment",
            "medications": STATINS,
            "on_breach": {
                "priority": priority,
                "due_within": due_within,
                "title": "Statin Therapy Required",
                "reason": reason,
                "action_required": action_required,
            },
        },
    }


QOF_INDICATORS: List[Dict[str, Any]] = [
    # ==================== Cardiovascular ====================
    {
        **_bp_control(
            "hyp_bp_control", "HYP008", "HYP009",
            "Hypertension BP Control", "cardiovascular",
            {"condition": HYPERTENSION}, 77,
            "Hypertensive patients whose last BP is <=140/90 (<=150/90 aged 80 and over)",
        ),
        "read_code": "XaJ4k",
        "snomed_code": "401311000000103",
    },
    _bp_control(
        "chd_bp_control", "CHD015", "CHD016",
        "CHD BP Control", "cardiovascular",
        {"condition": CHD}, 77,
        "CHD patients whose last BP is <=140/90 (<=150/90 aged 80 and over)",
    ),
    _bp_control(
        "stia_bp_control", "STIA014", "STIA015",
        "Stroke/TIA BP Control", "cardiovascular",
        {"condition": STROKE_TIA}, 77,
        "Stroke/TIA patients whose last BP is <=140/90 (<=150/90 aged 80 and over)",
    ),
    _statin(
        "chol_statin", "CHOL003", "CVD Secondary Prevention - Statin",
        {"condition": CVD + CKD}, "high", "7 days",
        "High-risk cardiovascular patient not on lipid-lowering therapy",
        "Initiate high-intensity statin (Atorvastatin 80mg)", 80,
    ),
    {
        "id": "chol_ldl_control",
        "code": "CHOL004",
        "name": "CVD LDL Cholesterol Control",
        "description": "CVD patients whose last LDL cholesterol in 12 months is <=2.0 mmol/L",
        "category": "cardiovascular",
        "framework": "QOF",
        "target_percent": 70,
        "applicability": {"condition": CVD},
        "rule": {
            "kind": "threshold",
            "metrics": ["cholesterol_ldl"],
            "variants": [{"limits": {"cholesterol_ldl": 2.0}}],
            "max_age_months": 12,
            "on_missing": {
                "priority": "medium",
                "due_within": "1 month",
                "title": "Lipid Profile Required",
                "reason": "No LDL cholesterol on record",
                "action_required": "Order lipid profile",
            },
            "on_stale": {
                "priority": "medium",
                "due_within": "1 month",
                "title": "Lipid Profile Required",
                "reason": "Cholesterol last checked {months} months ago",
                "action_required": "Order lipid profile",
            },
            "on_breach": {
                "priority": "medium",
                "due_within": "1 month",
                "title": "LDL Cholesterol Above Target",
                "reason": "LDL {cholesterol_ldl} mmol/L exceeds target <={target_cholesterol_ldl}",
                "action_required": "Review lipid-lowering therapy and adherence",
            },
            "escalations": [
                {
                    "above": {"cholesterol_ldl": {"op": "gt", "value": 2.5}},
                    "priority": "high",
                    "due_within": "14 days",
                    "action_required": "Intensify lipid-lowering therapy (consider ezetimibe)",
                },
            ],
        },
    },
    {
        "id": "af_anticoagulation",
        "code": "AF007",
        "name": "AF Anticoagulation",
        "description": "AF patients with CHA2DS2-VASc >=2 treated with anticoagulation",
        "category": "cardiovascular",
        "framework": "QOF",
        "target_percent": 95,
        "applicability": {"condition": ATRIAL_FIBRILLATION},
        "rule": {
            "kind": "treatment",
            "medications": ANTICOAGULANTS,
            "risk_field": "cha2ds2_vasc_score",
            "risk_min": 2,
            "on_missing": {
                "priority": "high",
                "due_within": "14 days",
                "title": "Stroke Risk Assessment Required",
                "reason": "No CHA2DS2-VASc score on record for AF patient",
                "action_required": "Calculate and record CHA2DS2-VASc score",
            },
            "on_breach": {
                "priority": "critical",
                "due_within": "3 days",
                "title": "Anticoagulation Required for AF",
                "reason": "CHA2DS2-VASc score {risk} (>={risk_min}), high stroke risk without anticoagulation",
                "action_required": "Initiate DOAC (e.g. Apixaban, Rivaroxaban) or refer for INR if Warfarin",
            },
        },
    },

    # ==================== Diabetes ====================
    {
        "id": "dm_hba1c_control",
        "code": "DM006",
        "name": "Diabetes HbA1c Control",
        "description": "Diabetic patients whose last HbA1c is <=58 mmol/mol (<=75 if moderately or severely frail)",
        "category": "diabetes",
        "framework": "QOF",
        "target_percent": 75,
        "applicability": {"condition": DIABETES},
        "rule": {
            "kind": "threshold",
            "metrics": ["hba1c_mmol_mol"],
            "variants": [
                {"when": {"frailty_in": MODERATE_OR_SEVERE}, "code": "DM012", "limits": {"hba1c_mmol_mol": 75}},
                {"limits": {"hba1c_mmol_mol": 58}},
            ],
            "max_age_months": 6,
            "on_missing": {
                "priority": "high",
                "due_within": "14 days",
                "title": "HbA1c Test Required",
                "reason": "No HbA1c on record",
                "action_required": "Order HbA1c blood test and diabetes review",
            },
            "on_stale": {
                "priority": "high",
                "due_within": "14 days",
                "title": "HbA1c Test Required",
                "reason": "HbA1c last checked {months} months ago",
                "action_required": "Order HbA1c blood test and diabetes review",
            },
            "on_breach": {
                "priority": "high",
                "due_within": "14 days",
                "title": "Diabetes Control Sub-optimal",
                "reason": "HbA1c {hba1c_mmol_mol} mmol/mol exceeds target <={target_hba1c_mmol_mol}",
                "action_required": "Diabetes medication review and lifestyle counselling",
            },
            "escalations": [
                {
                    "above": {"hba1c_mmol_mol": {"op": "gt", "value": 86}},
                    "priority": "critical",
                    "due_within": "7 days",
                    "action_required": "URGENT: Diabetes medication intensification and dietary review",
                },
            ],
        },
    },
    _bp_control(
        "dm_bp_control", "DM036", None,
        "Diabetes BP Control", "diabetes",
        {"all_of": [
            {"condition": DIABETES},
            {"age_lt": 80},
            {"none_of": [{"frailty_in": MODERATE_OR_SEVERE}]},
        ]},
        77,
        "Diabetic patients under 80 without moderate or severe frailty whose last BP is <=140/90",
    ),
    _statin(
        "dm_statin_secondary", "DM035", "Diabetes Statin (CVD)",
        {"all_of": [{"condition": DIABETES}, {"condition": CVD}]},
        "high", "1 month",
        "Diabetic with CVD history, not on statin",
        "Review for statin initiation (Atorvastatin 80mg)", 85,
    ),
    _statin(
        "dm_statin_primary", "DM034", "Diabetes Statin (no CVD)",
        {"all_of": [{"condition": DIABETES}, {"age_gte": 40}, {"none_of": [{"condition": CVD}]}]},
        "medium", "1 month",
        "Diabetic aged {age}, not on statin",
        "Review for statin initiation (Atorvastatin 20mg)", 70,
    ),

    # ==================== Heart failure ====================
    {
        "id": "hf_acei",
        "code": "HF003",
        "name": "Heart Failure ACE-I/ARB",
        "description": "Heart failure patients treated with an ACE inhibitor or ARB",
        "category": "heart_failure",
        "framework": "QOF",
        "target_percent": 80,
        "applicability": {"condition": HEART_FAILURE},
        "rule": {
            "kind": "treatment",
            "medications": ACEI_ARB,
            "on_breach": {
                "priority": "high",
                "due_within": "7 days",
                "title": "ACE-I/ARB Required for Heart Failure",
                "reason": "Heart failure patient not on ACE inhibitor or ARB",
                "action_required": "Initiate Ramipril 1.25mg and titrate, check U&Es",
            },
        },
    },
    {
        "id": "hf_beta_blocker",
        "code": "HF006",
        "name": "Heart Failure Beta-Blocker",
        "description": "Heart failure patients treated with a beta-blocker",
        "category": "heart_failure",
        "framework": "QOF",
        "target_percent": 80,
        "applicability": {"condition": HEART_FAILURE},
        "rule": {
            "kind": "treatment",
            "medications": BETA_BLOCKERS,
            "on_breach": {
                "priority": "high",
                "due_within": "7 days",
                "title": "Beta-Blocker Required for Heart Failure",
                "reason": "Heart failure patient not on beta-blocker",
                "action_required": "Initiate Bisoprolol 1.25mg and titrate up",
            },
        },
    },

    # ==================== Respiratory / mental health ====================
    _annual_review(
        "ast_review", "AST007", "Annual Asthma Review", "respiratory", ASTHMA,
        "Asthma review: control assessment, inhaler technique, action plan", 70,
    ),
    _annual_review(
        "copd_review", "COPD010", "COPD Review and Spirometry", "respiratory", COPD,
        "COPD review with FeV1 measurement, inhaler check, exacerbation history", 70,
    ),
    _annual_review(
        "dem_review", "DEM004", "Annual Dementia Review", "mental_health", DEMENTIA,
        "Dementia review including carer support assessment", 70,
    ),
    _annual_review(
        "mh_care_plan", "MH002", "Mental Health Care Plan", "mental_health", SERIOUS_MENTAL_ILLNESS,
        "Agree and document a comprehensive care plan", 70,
    ),

    # ==================== Lifestyle ====================
    {
        "id": "smok_status",
        "code": "SMOK002",
        "name": "Smoking Status Recording",
        "description": "Patients with a long-term condition with smoking status recorded in 12 months",
        "category": "lifestyle",
        "framework": "QOF",
        "read_code": "1375.",
        "snomed_code": "365981007",
        "target_percent": 85,
        "applicability": {"condition_count_gte": 1},
        "rule": {
            "kind": "recorded",
            "source": "observation",
            "metrics": ["smoking_status"],
            "max_age_months": 12,
            "on_missing": {
                "priority": "low",
                "due_within": "1 month",
                "title": "Smoking Status Recording",
                "reason": "Patient with long-term condition - smoking status not recorded",
                "action_required": "Record current smoking status and offer cessation support if smoker",
            },
            "on_stale": {
                "priority": "low",
                "due_within": "1 month",
                "title": "Smoking Status Recording",
                "reason": "Smoking status last recorded {months} months ago",
                "action_required": "Record current smoking status and offer cessation support if smoker",
            },
        },
    },
    {
        "id": "smok_cessation",
        "code": "SMOK004",
        "name": "Smoking Cessation Advice",
        "description": "Smokers offered smoking cessation support",
        "category": "lifestyle",
        "framework": "QOF",
        "read_code": "8CAL.",
        "snomed_code": "710081004",
        "target_percent": 90,
        "applicability": {"age_gte": 15},
        "rule": {
            "kind": "categorical",
            "source": "observation",
            "metrics": ["smoking_status"],
            "variants": [{"allowed": ["never", "former"]}],
            "on_breach": {
                "priority": "medium",
                "due_within": "1 month",
                "title": "Smoking Cessation Support",
                "reason": "Current smoker (status: {value})",
                "action_required": "Offer smoking cessation support and referral",
            },
        },
    },
    {
        "id": "bmi_recording",
        "code": "OB002",
        "name": "BMI Recording",
        "description": "Adult patients with BMI recorded in last 12 months",
        "category": "lifestyle",
        "framework": "QOF",
        "read_code": "22K..",
        "snomed_code": "60621009",
        "target_percent": 75,
        "applicability": {"age_gte": 18},
        "rule": {
            "kind": "recorded",
            "source": "observation",
            "metrics": ["weight_kg", "height_cm"],
            "max_age_months": 12,
            "on_missing": {
                "priority": "low",
                "reason": "No weight and height recorded together",
                "action_required": "Record weight and height to calculate BMI",
            },
            "on_stale": {
                "priority": "low",
                "reason": "BMI last recorded {months} months ago",
                "action_required": "Record weight and height to calculate BMI",
            },
        },
    },
    {
        "id": "alcohol_screening",
        "code": "ALC001",
        "name": "Alcohol Screening",
        "description": "Patients screened for alcohol consumption",
        "category": "lifestyle",
        "framework": "QOF",
        "read_code": "136..",
        "snomed_code": "228273003",
        "target_percent": 70,
        "applicability": {"age_gte": 16},
        "rule": {
            "kind": "recorded",
            "source": "observation",
            "metrics": ["alcohol_units_per_week"],
            "on_missing": {
                "priority": "low",
                "reason": "Alcohol consumption not recorded",
                "action_required": "Record weekly alcohol units (AUDIT-C if above 14)",
            },
        },
    },

    # ==================== NICE ====================
    {
        "id": "nice_falls",
        "code": "CG161",
        "name": "Falls Risk Assessment",
        "description": "Frail patients on five or more medications offered falls assessment",
        "category": "safety",
        "framework": "NICE",
        "target_percent": 80,
        "applicability": {"all_of": [
            {"frailty_in": MODERATE_OR_SEVERE},
            {"medication_count_gte": 5},
        ]},
        "rule": {
            "kind": "flag",
            "on_breach": {
                "priority": "medium",
                "due_within": "2 weeks",
                "title": "Falls Risk Assessment",
                "reason": "Frail patient ({frailty}) on {medication_count} medications",
                "action_required": "Multifactorial falls assessment, medication review, bone health check",
            },
            "escalations": [
                {"when": {"frailty_in": ["severe"]}, "priority": "high", "due_within": "2 weeks"},
            ],
        },
    },
    {
        "id": "nice_polypharmacy",
        "code": "NG5",
        "name": "Polypharmacy Review",
        "description": "Patients on ten or more medications offered a structured medication review",
        "category": "safety",
        "framework": "NICE",
        "target_percent": 80,
        "applicability": {"medication_count_gte": 10},
        "rule": {
            "kind": "flag",
            "on_breach": {
                "priority": "medium",
                "due_within": "1 month",
                "title": "Polypharmacy Review Required",
                "reason": "Patient on {medication_count} medications - high polypharmacy burden",
                "action_required": "Structured medication review, deprescribing assessment",
            },
        },
    },
    {
        "id": "nice_ckd_monitoring",
        "code": "CG182",
        "name": "Renal Function Monitoring",
        "description": "CKD patients and diabetics on ACE-I/ARB with regular renal monitoring",
        "category": "preventive_care",
        "framework": "NICE",
        "target_percent": 80,
        "applicability": {"any_of": [
            {"condition": CKD},
            {"all_of": [{"condition": DIABETES}, {"medication": ACEI_ARB}]},
        ]},
        "rule": {
            "kind": "flag",
            "on_breach": {
                "priority": "medium",
                "due_within": "1 month",
                "title": "Renal Function Monitoring",
                "reason": "CKD patient or diabetic on ACE-I/ARB - regular U&E monitoring needed",
                "action_required": "Check U&E, eGFR, and urine ACR",
            },
        },
    },

    # ==================== KPI / safety ====================
    {
        "id": "kpi_ltc_review",
        "code": "LTC-REV",
        "name": "Annual Care Review",
        "description": "Patients with two or more long-term conditions reviewed in 12 months",
        "category": "preventive_care",
        "framework": "KPI",
        "target_percent": 80,
        "applicability": {"condition_count_gte": 2},
        "rule": {
            "kind": "review",
            "metrics": ["last_review_date"],
            "max_age_months": 12,
            "on_missing": {
                "priority": "medium",
                "due_within": "2 weeks",
                "title": "Annual Care Review Overdue",
                "reason": "No annual review on record",
                "action_required": "Comprehensive care review for multiple long-term conditions",
            },
            "on_breach": {
                "priority": "medium",
                "due_within": "2 weeks",
                "title": "Annual Care Review Overdue",
                "reason": "Last reviewed {months} months ago with {condition_count} conditions",
                "action_required": "Comprehensive care review for multiple long-term conditions",
            },
        },
    },
    {
        "id": "safety_dmard",
        "code": "DMARD-MON",
        "name": "High-Risk Medication Monitoring",
        "description": "Patients on DMARDs or lithium under shared care blood monitoring",
        "category": "safety",
        "framework": "Safety",
        "target_percent": 100,
        "applicability": {"medication": HIGH_RISK_MEDICINES},
        "rule": {
            "kind": "flag",
            "on_breach": {
                "priority": "high",
                "due_within": "7 days",
                "title": "High-Risk Medication Monitoring",
                "reason": "Patient on DMARD/high-risk medication requiring regular blood monitoring",
                "action_required": "Check shared care monitoring is in place, review recent bloods",
            },
        },
    },
    {
        "id": "eol_dnacpr",
        "code": "DNACPR-REV",
        "name": "DNACPR Decision Recorded",
        "description": "Severely frail and care home patients with a documented DNACPR decision",
        "category": "safety",
        "framework": "KPI",
        "target_percent": 90,
        "applicability": {"any_of": [
            {"frailty_in": ["severe"]},
            {"field_present": "care_home_name"},
        ]},
        "rule": {
            "kind": "categorical",
            "metrics": ["dnacpr_status"],
            "variants": [{"allowed": ["In Place", "Not in Place"]}],
            "on_missing": {
                "priority": "medium",
                "due_within": "1 month",
                "title": "DNACPR Discussion Required",
                "reason": "No DNACPR decision on record",
                "action_required": "Discuss treatment escalation and resuscitation wishes, record outcome",
            },
            "on_breach": {
                "priority": "medium",
                "due_within": "1 month",
                "title": "DNACPR Discussion Required",
                "reason": "DNACPR status is '{value}'",
                "action_required": "Discuss treatment escalation and resuscitation wishes, record outcome",
            },
        },
    },
]


# ==================== EMIS code mappings ====================

READ_CODE_MAPPINGS: List[Dict[str, str]] = [
    {"metric": "blood_pressure", "read_code": "246.", "snomed_code": "75367002", "description": "Blood pressure reading"},
    {"metric": "blood_pressure_systolic", "read_code": "2469.", "snomed_code": "271649006", "description": "Systolic blood pressure"},
    {"metric": "blood_pressure_diastolic", "read_code": "246A.", "snomed_code": "271650006", "description": "Diastolic blood pressure"},
    {"metric": "pulse_rate", "read_code": "242..", "snomed_code": "78564009", "description": "Pulse rate"},
    {"metric": "weight_kg", "read_code": "22A..", "snomed_code": "27113001", "description": "Weight"},
    {"metric": "height_cm", "read_code": "229..", "snomed_code": "50373000", "description": "Height"},
    {"metric": "bmi", "read_code": "22K..", "snomed_code": "60621009", "description": "Body mass index"},
    {"metric": "smoking_status", "read_code": "1375.", "snomed_code": "365981007", "description": "Smoking status"},
    {"metric": "alcohol_units_per_week", "read_code": "136..", "snomed_code": "228273003", "description": "Alcohol consumption"},
]


def get_read_code_for_metric(metric: str) -> Optional[Dict[str, str]]:
    """EMIS Read/SNOMED mapping for a recorded metric, or None if unmapped."""
    for mapping in READ_CODE_MAPPINGS:
        if mapping["metric"] == metric:
            return mapping
    return None
