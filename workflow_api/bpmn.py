"""
Inject external service tasks into a BPMN document before it is deployed.

The injector only touches the first ``<bpmn:process>``: it adds
``<bpmn:serviceTask camunda:type="external">`` nodes and rewires the
sequence flows around them. Diagram (``bpmndi``) shapes are left alone,
the engine does not need them.
"""
import io
import re
import threading
import xml.etree.ElementTree as ET

BPMN_NS = "http://www.omg.org/spec/BPMN/20100524/MODEL"
CAMUNDA_NS = "http://camunda.org/schema/1.0/bpmn"

DEFAULT_TOPIC = "service-task-topic"


def _tag(name: str) -> str:
    return f"{{{BPMN_NS}}}{name}"


# ET keeps one prefix map for the whole process
_namespace_lock = threading.Lock()


def _collect_namespaces(bpmn_xml: str) -> dict:
    seen = {}
    for _, (prefix, uri) in ET.iterparse(io.StringIO(bpmn_xml), events=("start-ns",)):
        if re.match(r"ns\d+$", prefix):
            continue
        seen.setdefault(prefix, uri)
    seen.setdefault("camunda", CAMUNDA_NS)
    return seen


class BpmnServiceTaskInjector:
    def __init__(self, bpmn_xml: str, topic: str = DEFAULT_TOPIC):
        try:
            self._namespaces = _collect_namespaces(bpmn_xml)
            self.root = ET.fromstring(bpmn_xml)
        except ET.ParseError as e:
            raise ValueError(f"Invalid BPMN XML: {e}") from e

        self.process = self.root.find(f".//{_tag('process')}")
        if self.process is None:
            raise ValueError("No BPMN process found in the XML")
        self.topic = topic
        self._id_counter = 1000

    def generate_id(self, prefix: str) -> str:
        self._id_counter += 1
        return f"{prefix}_{self._id_counter - 1}"

    # -- element helpers ----------------------------------------------------

    def _create_service_task(self, task_id: str, name: str) -> ET.Element:
        task = ET.SubElement(self.process, _tag("serviceTask"))
        task.set("id", task_id)
        task.set("name", name)
        task.set(f"{{{CAMUNDA_NS}}}type", "external")
        task.set(f"{{{CAMUNDA_NS}}}topic", self.topic)
        return task

    def _create_sequence_flow(self, flow_id: str, source_ref: str, target_ref: str) -> ET.Element:
        flow = ET.SubElement(self.process, _tag("sequenceFlow"))
        flow.set("id", flow_id)
        flow.set("sourceRef", source_ref)
        flow.set("targetRef", target_ref)
        return flow

    def _element(self, element_id: str):
        for el in self.process:
            if el.get("id") == element_id:
                return el
        return None

    def _add_ref(self, element_id: str, kind: str, flow_id: str):
        el = self._element(element_id)
        if el is None:
            return
        # schema order: documentation, extensionElements, incoming, outgoing, ...
        leading = {_tag("documentation"), _tag("extensionElements"), _tag("incoming")}
        if kind == "outgoing":
            leading.add(_tag("outgoing"))
        index = 0
        for i, child in enumerate(el):
            if child.tag in leading:
                index = i + 1
        ref = ET.Element(_tag(kind))
        ref.text = flow_id
        el.insert(index, ref)

    def _drop_ref(self, element_id: str, kind: str, flow_id: str):
        el = self._element(element_id)
        if el is None:
            return
        for ref in el.findall(_tag(kind)):
            if (ref.text or "").strip() == flow_id:
                el.remove(ref)

    def find_events(self, kind: str) -> list:
        return [el.get("id") for el in self.process.findall(_tag(kind))]

    def find_outgoing_flows(self, element_id: str) -> list:
        return [f for f in self.process.findall(_tag("sequenceFlow")) if f.get("sourceRef") == element_id]

    def find_incoming_flows(self, element_id: str) -> list:
        return [f for f in self.process.findall(_tag("sequenceFlow")) if f.get("targetRef") == element_id]

    # -- injection ----------------------------------------------------------

    def inject_service_task_after_start(self, task_name: str = "Pre-Process Service Task") -> list:
        created = []
        for start_id in self.find_events("startEvent"):
            task_id = self.generate_id("ServiceTask")
            self._create_service_task(task_id, task_name)
            outgoing = self.find_outgoing_flows(start_id)

            first = self._create_sequence_flow(self.generate_id("Flow"), start_id, task_id)
            self._add_ref(start_id, "outgoing", first.get("id"))
            self._add_ref(task_id, "incoming", first.get("id"))

            for flow in outgoing:
                target = flow.get("targetRef")
                new_flow = self._create_sequence_flow(self.generate_id("Flow"), task_id, target)
                self._add_ref(task_id, "outgoing", new_flow.get("id"))
                self._drop_ref(start_id, "outgoing", flow.get("id"))
                self._drop_ref(target, "incoming", flow.get("id"))
                self._add_ref(target, "incoming", new_flow.get("id"))
                self.process.remove(flow)
            created.append(task_id)
        return created

    def inject_service_task_before_end(self, task_name: str = "Post-Process Service Task") -> list:
        created = []
        for end_id in self.find_events("endEvent"):
            task_id = self.generate_id("ServiceTask")
            self._create_service_task(task_id, task_name)
            incoming = self.find_incoming_flows(end_id)

            last = self._create_sequence_flow(self.generate_id("Flow"), task_id, end_id)
            for flow in incoming:
                flow.set("targetRef", task_id)
                self._drop_ref(end_id, "incoming", flow.get("id"))
                self._add_ref(task_id, "incoming", flow.get("id"))
            self._add_ref(task_id, "outgoing", last.get("id"))
            self._add_ref(end_id, "incoming", last.get("id"))
            created.append(task_id)
        return created

    def add_custom_service_task(self, after_element_id: str, before_element_id: str, name: str, **attrs) -> str:
        """Insert a task between two elements. ``type``/``topic`` and ``camunda:*``
        keys land in the camunda namespace, anything else is set verbatim."""
        task_id = self.generate_id("CustomServiceTask")
        task = self._create_service_task(task_id, name)
        for key, value in attrs.items():
            if key in ("type", "topic"):
                task.set(f"{{{CAMUNDA_NS}}}{key}", str(value))
            elif key.startswith("camunda:"):
                task.set(f"{{{CAMUNDA_NS}}}{key.split(':', 1)[1]}", str(value))
            else:
                task.set(key, str(value))

        into = self._create_sequence_flow(self.generate_id("Flow"), after_element_id, task_id)
        out = self._create_sequence_flow(self.generate_id("Flow"), task_id, before_element_id)
        self._add_ref(after_element_id, "outgoing", into.get("id"))
        self._add_ref(task_id, "incoming", into.get("id"))
        self._add_ref(task_id, "outgoing", out.get("id"))
        self._add_ref(before_element_id, "incoming", out.get("id"))
        return task_id

    def get_modified_xml(self) -> str:
        # keeps the original prefixes (bpmn:, camunda:, ...) on output
        with _namespace_lock:
            for prefix, uri in self._namespaces.items():
                ET.register_namespace(prefix, uri)
            return ET.tostring(self.root, encoding="unicode")

    def save_to_file(self, path: str):
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.get_modified_xml())


def inject_service_tasks(bpmn_xml: str, pre_process: bool = True, post_process: bool = True,
                         pre_name: str = "Pre-Process Service Task",
                         post_name: str = "Post-Process Service Task",
                         topic: str = DEFAULT_TOPIC) -> str:
    injector = BpmnServiceTaskInjector(bpmn_xml, topic=topic)
    if pre_process:
        injector.inject_service_task_after_start(pre_name)
    if post_process:
        injector.inject_service_task_before_end(post_name)
    return injector.get_modified_xml()
