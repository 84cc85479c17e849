# cloudplay/qss.py
# Dark launcher theme, green accent for the play path

QSS = r"""
* {
  font-family: "Segoe UI", "Inter", system-ui, sans-serif;
  font-size: 10.5pt;
  color: #E8ECF5;
}
QWidget { background: #0B0F14; }
QLabel  { color: #C9D3E6; background: transparent; }

QLineEdit, QComboBox {
  background: rgba(16, 21, 28, 0.96);
  border: 1px solid rgba(255,255,255,0.12);
  border-radius: 10px;
  padding: 6px 8px;
  selection-background-color: #76B900;
}
QLineEdit:focus, QComboBox:focus {
  border: 1px solid rgba(118,185,0,0.60);
}
QLineEdit:disabled, QComboBox:disabled { color: #6B7585; }

QPushButton {
  background: rgba(118,185,0,0.16);
  border: 1px solid rgba(118,185,0,0.45);
  border-radius: 12px;
  padding: 6px 14px;
}
QPushButton:hover    { background: rgba(118,185,0,0.26); }
QPushButton:pressed  { background: rgba(118,185,0,0.34); }
QPushButton:disabled { color: #6B7585; border-color: rgba(255,255,255,0.10); background: transparent; }
"""
