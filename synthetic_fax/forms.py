"""
Claim Form - a raster claim-form template and the stamping of records into it.

Provides:
- A one-page form layout (labelled text boxes and check boxes)
- Blank template rendering with Pillow
- Stamping a ClaimRecord into the template; dates are split into
  YYYY / MM / DD boxes
- Per-document exports: testdata_<id>_p1.png and testdata_<id>_p1.json

The PNG pages are the input of the fax pipeline.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from PIL import Image, ImageDraw, ImageFont

from .records import ClaimRecord

logger = logging.getLogger(__name__)

PAGE_SIZE = (1700, 2200)    # US letter at 200 dpi
PAGE_DPI = 200


class FieldKind(Enum):
    TEXT = "text"
    CHECKBOX = "checkbox"


@dataclass
class FormField:
    """One box on the form, fed from a record field."""
    label: str
    source: str
    box: Tuple[int, int, int, int]
    kind: FieldKind = FieldKind.TEXT
    part: Optional[str] = None          # "year" | "month" | "day" for split dates
    checked_value: Optional[str] = None  # CHECKBOX is ticked when the value matches

    def resolve(self, values: Dict[str, str]) -> str:
        raw = values.get(self.source, "")
        if self.kind == FieldKind.CHECKBOX:
            return "X" if raw == self.checked_value else ""
        if self.part and "-" in raw:
            year, month, day = raw.split("-")
            return {"year": year, "month": month, "day": day}[self.part]
        return raw


def _date_boxes(label: str, source: str, x: int, y: int) -> List[FormField]:
    return [
        FormField(f"{label} YYYY", source, (x, y, x + 120, y + 50), part="year"),
        FormField(f"{label} MM", source, (x + 135, y, x + 205, y + 50), part="month"),
        FormField(f"{label} DD", source, (x + 220, y, x + 290, y + 50), part="day"),
    ]


def default_layout() -> List[FormField]:
    """Field layout of the physician's first report (form 8/11, page 1)."""
    fields = [
        FormField("Claim Number", "Claim_Number", (100, 260, 500, 310)),
        FormField("Form Type 8", "P2D_FormType8", (1200, 260, 1240, 300),
                  FieldKind.CHECKBOX, checked_value="1"),
        FormField("Form Type 11", "P2D_FormType11", (1400, 260, 1440, 300),
                  FieldKind.CHECKBOX, checked_value="1"),
        FormField("Worker Last Name", "Wrkr_LastName", (100, 420, 700, 470)),
        FormField("Worker First Name", "Wrkr_FirstName", (740, 420, 1300, 470)),
        FormField("Worker Middle Initial", "Wrkr_MiddleInitials", (1340, 420, 1420, 470)),
        FormField("Worker Gender", "Wrkr_Gender", (1460, 420, 1600, 470)),
        FormField("Worker Address 1", "Wrkr_AddressLine1", (100, 580, 800, 630)),
        FormField("Worker Address 2", "Wrkr_AddressLine2", (840, 580, 1600, 630)),
        FormField("Worker Area Code", "Wrkr_AreaCode", (100, 740, 220, 790)),
        FormField("Worker Phone Number", "Wrkr_Number", (240, 740, 360, 790)),
        FormField("Worker Phone Extension", "Wrkr_Extension", (380, 740, 520, 790)),
        FormField("Worker Personal Health Number", "Wrkr_PersonalHealthNumber", (600, 740, 1000, 790)),
        FormField("Employers Name", "Emp_EmployerAccountName", (100, 900, 900, 950)),
        FormField("Employer Address 1", "Emp_AddressLine1", (100, 1060, 800, 1110)),
        FormField("Employer Address 2", "Emp_AddressLine2", (840, 1060, 1600, 1110)),
        FormField("Employer Area Code", "Emp_PhoneAreaCode", (100, 1220, 220, 1270)),
        FormField("Employer Prefix", "Emp_PhonePrefix", (240, 1220, 360, 1270)),
        FormField("Employer Phone Number", "Emp_PhoneNumber", (380, 1220, 520, 1270)),
        FormField("Diagnosis Text", "Inj_DiagnosisText", (100, 1540, 1600, 1590)),
        FormField("Incident Description", "Claim_IncidentDescriptionText", (100, 1700, 1600, 1750)),
        FormField("Lost Time Indicator", "Claim_LostTimeIndicator", (100, 1860, 160, 1910)),
        FormField("Report Period Type Code", "Rptm_ReportedTimePeriodTypeCode", (400, 1860, 460, 1910)),
        FormField("Wish To Consult Yes", "Med_ConsultNurseAdvisorIndicator", (800, 1860, 840, 1900),
                  FieldKind.CHECKBOX, checked_value="1"),
        FormField("Wish To Consult No", "Med_ConsultNurseAdvisorIndicator", (1000, 1860, 1040, 1900),
                  FieldKind.CHECKBOX, checked_value="0"),
        FormField("Practitioner Number", "Prvdr_PractitionerNumber", (100, 2020, 400, 2070)),
        FormField("Practitioner First Name", "Prvdr_FirstName", (440, 2020, 900, 2070)),
        FormField("Practitioner Last Name", "Prvdr_LastName", (940, 2020, 1600, 2070)),
    ]
    fields += _date_boxes("Date Of Birth", "Wrkr_DateOfBirth", 1200, 900)
    fields += _date_boxes("Date Of Injury", "Inj_IncidentFromDateTime", 100, 1380)
    fields += _date_boxes("Date Of Service", "Claim_DateOfService", 500, 1380)
    fields += _date_boxes("Report Period Start", "Rptm_PeriodStartDatetime", 900, 1380)
    fields += _date_boxes("Recovery Date", "P2D_MaximalRecoveryDate", 1300, 1380)
    return fields


def get_font(size: int) -> ImageFont.ImageFont:
    try:
        return ImageFont.truetype("DejaVuSans.ttf", size)
    except OSError:
        return ImageFont.load_default()


class ClaimFormTemplate:
    """Blank form page plus the layout used to fill it."""

    def __init__(self, fields: Optional[List[FormField]] = None,
                 size: Tuple[int, int] = PAGE_SIZE, title: str = "Physician's Report"):
        self.fields = fields if fields is not None else default_layout()
        self.size = size
        self.title = title
        self._blank: Optional[Image.Image] = None

    def render_blank(self) -> Image.Image:
        """Template page with the title, labels and empty boxes."""
        if self._blank is None:
            img = Image.new("L", self.size, 255)
            draw = ImageDraw.Draw(img)
            draw.text((100, 100), self.title, fill=0, font=get_font(48))
            label_font = get_font(20)
            for f in self.fields:
                x0, y0, x1, y1 = f.box
                draw.text((x0, y0 - 28), f.label, fill=0, font=label_font)
                draw.rectangle(f.box, outline=0, width=2)
            self._blank = img
        return self._blank.copy()

    def stamp(self, record: ClaimRecord) -> Tuple[Image.Image, List[Dict]]:
        """Fill the template with one record; returns the page and field export."""
        img = self.render_blank()
        draw = ImageDraw.Draw(img)
        value_font = get_font(28)
        exported = []
        for f in self.fields:
            value = f.resolve(record.values)
            if value:
                x0, y0, x1, y1 = f.box
                if f.kind == FieldKind.CHECKBOX:
                    draw.line((x0 + 6, y0 + 6, x1 - 6, y1 - 6), fill=0, width=4)
                    draw.line((x0 + 6, y1 - 6, x1 - 6, y0 + 6), fill=0, width=4)
                else:
                    draw.text((x0 + 8, y0 + 10), value, fill=0, font=value_font)
            exported.append({
                "name": f.label,
                "source": f.source,
                "kind": f.kind.value,
                "value": value,
                "box": list(f.box),
            })
        return img, exported


def write_form(template: ClaimFormTemplate, record: ClaimRecord,
               output_dir: Union[str, Path]) -> Tuple[Path, Path]:
    """Save testdata_<id>_p1.png and its JSON field export."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    stem = f"testdata_{record.id}_p1"
    img, exported = template.stamp(record)

    png_path = output_dir / f"{stem}.png"
    img.save(png_path, format="PNG", dpi=(PAGE_DPI, PAGE_DPI))

    json_path = output_dir / f"{stem}.json"
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump({"id": record.id, "image_path": str(png_path),
                   "image_size": list(img.size), "fields": exported},
                  f, ensure_ascii=False, indent=2)
    logger.debug("Stamped record %s -> %s", record.id, png_path.name)
    return png_path, json_path
